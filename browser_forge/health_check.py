"""Health check utilities for Browser Forge.

Verifies the local environment before running mining or merges:
- Notification environment variables
- Config file readability
- Candidate store location is writable and parseable
- Skills directory for the skill-pack gateway is writable
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
from yaml import safe_load

from .config import DEFAULT_CONFIG_PATH, ForgeConfig, load_config


console = Console()


def _check_env_vars() -> Tuple[bool, List[str]]:
  """Check that the notification environment variables are present."""
  required = [
      "TELEGRAM_BOT_TOKEN",
      "TELEGRAM_CHAT_ID",
  ]
  missing = [name for name in required if not os.environ.get(name)]
  return len(missing) == 0, missing


def _check_writable_dir(directory: Path) -> Tuple[bool, str]:
  """Check that ``directory`` exists (or can be created) and accepts writes."""
  try:
      directory.mkdir(parents=True, exist_ok=True)
      with tempfile.NamedTemporaryFile(dir=str(directory), prefix=".health-", delete=True):
          pass
  except OSError as exc:
      return False, f"{directory} is not writable: {exc}"
  return True, f"{directory} is writable."


def _check_config_file() -> Tuple[bool, str]:
  """Check that the config file, if present, parses as a YAML mapping."""
  path = Path(os.environ.get("FORGE_CONFIG") or DEFAULT_CONFIG_PATH)
  if not path.exists():
      return True, f"{path} not found; using defaults."
  try:
      data = safe_load(path.read_text(encoding="utf-8"))
  except Exception as exc:  # noqa: BLE001
      return False, f"{path} is not valid YAML: {exc!r}"
  if data is not None and not isinstance(data, dict):
      return False, f"{path} is not a mapping."
  return True, f"{path} parsed OK."


def _check_state(config: ForgeConfig) -> Tuple[bool, str]:
  """Check that the candidate store file is readable and its directory writable."""
  ok, details = _check_writable_dir(config.state_path.parent)
  if not ok:
      return ok, details
  if not config.state_path.exists():
      return True, f"{config.state_path} will be created on first mine."
  try:
      safe_load(config.state_path.read_text(encoding="utf-8"))
  except Exception as exc:  # noqa: BLE001
      logger.exception("Candidate store health check failed.")
      return False, f"Candidate store unreadable: {exc!r}"
  return True, f"{config.state_path} readable."


def run_health_check(config: ForgeConfig | None = None) -> Dict[str, Dict[str, str]]:
  """Run all health checks and return structured results."""
  config = config or load_config()
  results: Dict[str, Dict[str, str]] = {}

  env_ok, missing = _check_env_vars()
  results["env"] = {
      # notifications are optional, so missing credentials only warn
      "status": "ok" if env_ok else "warn",
      "details": "Telegram credentials present."
      if env_ok
      else f"Missing env vars (notifications disabled): {', '.join(missing)}",
  }

  config_ok, config_details = _check_config_file()
  results["config"] = {
      "status": "ok" if config_ok else "error",
      "details": config_details,
  }

  state_ok, state_details = _check_state(config)
  results["store"] = {
      "status": "ok" if state_ok else "error",
      "details": state_details,
  }

  skills_ok, skills_details = _check_writable_dir(config.skills_dir)
  results["skills_dir"] = {
      "status": "ok" if skills_ok else "error",
      "details": skills_details,
  }

  return results


def main() -> int:
  """CLI entry point for health checks."""
  load_dotenv()
  results = run_health_check()

  table = Table(title="Browser Forge Health Check", show_header=True, header_style="bold magenta")
  table.add_column("Component")
  table.add_column("Status")
  table.add_column("Details")

  overall_ok = True
  colors = {"ok": "green", "warn": "yellow"}
  for name, info in results.items():
      status = info.get("status", "error")
      details = info.get("details", "")
      overall_ok = overall_ok and status != "error"
      color = colors.get(status, "red")
      table.add_row(name, f"[{color}]{status}[/{color}]", details)

  console.print(table)
  return 0 if overall_ok else 1


if __name__ == "__main__":
  raise SystemExit(main())
