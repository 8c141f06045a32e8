from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


WARDS: Tuple[str, ...] = (
    "千代田区",
    "中央区",
    "港区",
    "新宿区",
    "文京区",
    "台東区",
    "墨田区",
    "江東区",
    "品川区",
    "目黒区",
    "大田区",
    "世田谷区",
    "渋谷区",
    "中野区",
    "杉並区",
    "豊島区",
    "北区",
    "荒川区",
    "板橋区",
    "練馬区",
    "足立区",
    "葛飾区",
    "江戸川区",
)

DEFAULT_WARD = "世田谷区"

# Funding source -> expense category -> program category -> line item.
TIER_PREFIXES: Tuple[str, ...] = ("rev_", "exp_", "cat_", "item_")
FUNDING_PREFIX = TIER_PREFIXES[0]

# Bucket name used when a funding link points at a node without a label.
OTHER_BUCKET = "その他"

BUDGET_STORE_DIR = os.environ.get("BUDGETFLOW_STORE_DIR") or os.path.join(os.getcwd(), "budget_store")
CACHE_PATH = os.path.join(BUDGET_STORE_DIR, "budget_cache.json")
SETTINGS_PATH = os.path.join(BUDGET_STORE_DIR, "settings.json")

DEFAULT_SETTINGS: Dict[str, object] = {
    "gemini_model": "gemini-3-flash-preview",
    "gemini_url": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    "gemini_api_key": "",
    "request_timeout": 120,
    "aggregate_endpoint": "target",
    "cache_path": CACHE_PATH,
}


def is_ward(key: object) -> bool:
    return isinstance(key, str) and key in WARDS


def tier_of(node_id: str) -> Optional[int]:
    nid = str(node_id or "")
    for idx, prefix in enumerate(TIER_PREFIXES):
        if nid.startswith(prefix):
            return idx
    return None


def ensure_store_dir(path: str = "") -> str:
    root = os.path.dirname(path) if path else BUDGET_STORE_DIR
    if root:
        os.makedirs(root, exist_ok=True)
    return root


def load_settings(path: Optional[str] = None) -> Dict[str, object]:
    settings = dict(DEFAULT_SETTINGS)
    target = path or SETTINGS_PATH
    if os.path.exists(target):
        try:
            with open(target, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                settings.update(data)
            else:
                logger.warning("Ignoring settings file %s: not a JSON object", target)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", target, exc)

    api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
    if api_key:
        settings["gemini_api_key"] = api_key
    model = os.environ.get("BUDGETFLOW_MODEL")
    if model:
        settings["gemini_model"] = model
    return settings


def save_settings(settings: Dict[str, object], path: Optional[str] = None) -> None:
    target = path or SETTINGS_PATH
    ensure_store_dir(target)
    # Never write the credential to disk.
    data = {k: v for k, v in dict(settings or {}).items() if k != "gemini_api_key"}
    with open(target, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
