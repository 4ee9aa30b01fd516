# config.py
"""
Runtime configuration read from the environment.

The project-root `.env` is loaded first so local development does not need
exported variables; real environment variables always win over the file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# src/iptaxcalc/config.py -> parents[2] == project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_DIR / "data"

load_dotenv(PROJECT_ROOT / ".env")

DB_URL = os.getenv("IPTAXCALC_DB_URL", "sqlite:///./iptaxcalc.db")
STORAGE_DIR = Path(os.getenv("IPTAXCALC_STORAGE_DIR", "storage_raw"))

TAX_TABLES_PATH = Path(os.getenv("IPTAXCALC_TAX_TABLES", str(DATA_DIR / "tax_tables.yaml")))
TRANSFER_RULES_PATH = Path(os.getenv("IPTAXCALC_TRANSFER_RULES", str(DATA_DIR / "transfer_rules.yaml")))

# Regime assigned to a year the user has not configured yet
DEFAULT_TAX_SYSTEM = os.getenv("IPTAXCALC_DEFAULT_TAX_SYSTEM", "simplified_4")

MAX_UPLOAD_MB = int(os.getenv("IPTAXCALC_MAX_UPLOAD_MB", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
