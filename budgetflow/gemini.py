from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import requests

from .config import load_settings
from .errors import ConfigError, FetchFailure, QuotaExceeded
from .extract import parse_citations
from .pipeline import build_budget_result
from .types import BudgetResult, Citation

logger = logging.getLogger(__name__)


def build_budget_prompt(ward: str) -> str:
    return (
        f"{ward}の最新（令和6年度または令和5年度補正を含む最新）の観光関連予算について詳細に調査し、"
        "その内訳を可能な限り「細目（具体的な事業レベル）」まで分解してサンキーダイアグラム用のJSON形式で出力してください。\n\n"
        "以下の厳格な階層構造（一方向のフロー）を維持してください。\n"
        "【重要】循環参照（A→B→AやA→A）は絶対に含めないでください。"
        "IDは各層でユニークにし、以下のプレフィックスを付けてください。\n\n"
        "1. 【財源 (rev_*)】: 一般財源、国庫支出金、都支出金、地方債、その他収入など。\n"
        "2. 【費目 (exp_*)】: 「観光振興費」や「商業観光費」など。\n"
        "3. 【事業カテゴリー (cat_*)】: 観光プロモーション、イベント支援、観光インフラ整備、ふるさと納税関連など。\n"
        "4. 【具体的細目 (item_*)】: 各区の特色を反映した具体的事業。\n\n"
        "フローは必ず [財源] -> [費目] -> [事業カテゴリー] -> [具体的細目] の順に流れるようにしてください。\n"
        "金額はすべて千円単位の整数で記載してください。\n\n"
        "JSON出力形式：\n"
        "{\n"
        '  "nodes": [{"id": "prefix_id", "name": "名称"}, ...],\n'
        '  "links": [{"source": "id1", "target": "id2", "value": 数値}, ...],\n'
        '  "explanation": "詳細な解説文"\n'
        "}\n\n"
        "※実際の予算書に基づいた具体的数値を抽出してください。\n"
    )


def _response_text(data: Dict[str, object]) -> str:
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content") or {}
    parts = (content.get("parts") or []) if isinstance(content, dict) else []
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))


def _grounding_citations(data: Dict[str, object]) -> List[Citation]:
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return []
    meta = candidates[0].get("groundingMetadata") or {}
    chunks = (meta.get("groundingChunks") or []) if isinstance(meta, dict) else []
    return parse_citations([c for c in chunks if isinstance(c, dict) and c.get("web")])


def call_gemini(
    prompt: str,
    api_key: str,
    model: str,
    url_template: str,
    timeout: int = 120,
    session: Optional[requests.Session] = None,
) -> Tuple[str, List[Citation]]:
    if not api_key:
        raise ConfigError("API Key is missing.")

    payload = {
        "contents": [{"parts": [{"text": prompt}]}],
        "tools": [{"google_search": {}}],
    }
    url = url_template.format(model=model)
    poster = session.post if session is not None else requests.post
    try:
        resp = poster(url, json=payload, headers={"x-goog-api-key": api_key}, timeout=timeout)
    except requests.RequestException as exc:
        raise FetchFailure(f"Gemini request failed: {exc}") from exc

    if resp.status_code == 429:
        raise QuotaExceeded()
    try:
        resp.raise_for_status()
    except requests.HTTPError as exc:
        if "quota" in str(resp.text or "").lower():
            raise QuotaExceeded() from exc
        raise FetchFailure(f"Gemini request failed: {exc}") from exc

    try:
        data = resp.json()
    except ValueError as exc:
        raise FetchFailure("Gemini returned a non-JSON response") from exc
    if not isinstance(data, dict):
        raise FetchFailure("Gemini returned an unexpected response shape")
    return _response_text(data), _grounding_citations(data)


def fetch_ward_budget(
    ward: str,
    settings: Optional[Dict[str, object]] = None,
    session: Optional[requests.Session] = None,
) -> BudgetResult:
    cfg = settings if settings is not None else load_settings()
    text, citations = call_gemini(
        build_budget_prompt(ward),
        api_key=str(cfg.get("gemini_api_key", "") or ""),
        model=str(cfg.get("gemini_model", "")),
        url_template=str(cfg.get("gemini_url", "")),
        timeout=int(cfg.get("request_timeout", 120) or 120),
        session=session,
    )
    logger.info("Gemini answered for %s: %d chars, %d citations", ward, len(text), len(citations))
    return build_budget_result(text, citations)


def make_gemini_fetcher(settings: Optional[Dict[str, object]] = None, session: Optional[requests.Session] = None):
    """Adapt the blocking Gemini call to the cache's async fetcher signature."""
    cfg = settings if settings is not None else load_settings()

    async def fetcher(ward: str) -> BudgetResult:
        try:
            return await asyncio.to_thread(fetch_ward_budget, ward, cfg, session)
        except FetchFailure as exc:
            exc.key = ward
            raise

    return fetcher
