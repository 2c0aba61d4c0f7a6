import os
import json
import logging
import re
from datetime import date, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from procureflow.schemas.structured import (
    StructuredRFP,
    StructuredProposal,
    OCRExtraction,
    Recommendation,
    VendorComparison,
)
from procureflow.services.scoring import normalize_delivery_to_days

# Truncation limit for LLM context
_MAX_TEXT_LEN = 12000
_OLLAMA_TIMEOUT_SEC = 300
_OLLAMA_VISION_TIMEOUT_SEC = 180
_TEMPERATURE = 0.1

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class AIServiceError(Exception):
    """The language model was unreachable or returned output that does not fit the schema."""


def ai_provider() -> str:
    """Which AI backend is configured."""
    if os.getenv("OLLAMA_BASE_URL", "").strip():
        return "ollama"
    return "mock"


def _chat_model() -> str:
    return os.getenv("OLLAMA_MODEL", "llama3").strip() or "llama3"


def _vision_model() -> str:
    return os.getenv("OLLAMA_VISION_MODEL", "llama3.2-vision").strip() or "llama3.2-vision"


def _client(timeout: int = _OLLAMA_TIMEOUT_SEC):
    from ollama import Client

    base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").strip()
    return Client(host=base_url, timeout=timeout)


def _message_text(response: Any) -> str:
    msg = getattr(response, "message", None) or (response.get("message") if isinstance(response, dict) else None)
    return (getattr(msg, "content", None) if msg is not None else None) or (msg.get("content") if isinstance(msg, dict) else None) or ""


def _fix_trailing_commas(s: str) -> str:
    """Remove trailing commas before ] or } so JSON parses."""
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def _parse_json_from_response(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output; tolerate markdown fences and trailing commas."""
    text = (text or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[-1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 1)[-1].split("```", 1)[0].strip()
    start = text.find("{")
    if start >= 0:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    text = text[start : i + 1]
                    break
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    return json.loads(_fix_trailing_commas(text))


def structured_completion(system_prompt: str, user_message: str, schema: type[T]) -> T:
    """
    Ask the model for a JSON object constrained to schema and validate it.
    Raises AIServiceError on transport failure, empty output, bad JSON or schema mismatch.
    """
    logger.info("Structured completion: model=%s schema=%s", _chat_model(), schema.__name__)
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message[:_MAX_TEXT_LEN]},
    ]
    try:
        response = _client().chat(
            model=_chat_model(),
            messages=messages,
            format=schema.model_json_schema(),
            options={"temperature": _TEMPERATURE},
        )
    except Exception as e:
        raise AIServiceError(f"LLM request failed: {e}") from e
    text = _message_text(response)
    if not text.strip():
        raise AIServiceError("LLM returned an empty response.")
    try:
        return schema.model_validate(_parse_json_from_response(text))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error("Structured output did not fit %s. Raw output: %s", schema.__name__, text[:2000])
        raise AIServiceError(f"AI structured output failed to parse into {schema.__name__}: {e}") from e


def complete_text(system_prompt: str, user_message: str) -> str:
    try:
        response = _client().chat(
            model=_chat_model(),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message[:_MAX_TEXT_LEN]},
            ],
            options={"temperature": _TEMPERATURE},
        )
    except Exception as e:
        raise AIServiceError(f"LLM request failed: {e}") from e
    return _message_text(response)


# --- Deterministic fallbacks used when no model is configured ---

_AMOUNT = r"\$?\s?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
_ITEM_STOPWORDS = {
    "day", "days", "week", "weeks", "month", "months", "year", "years", "gb", "tb", "mb",
    "inch", "inches", "percent", "hours", "hour", "business", "net", "units", "x",
}


def _to_float(s: str) -> float:
    return float(s.replace(",", ""))


def _find_total(text: str) -> float | None:
    """'Total: $12,500' style figure, else the largest dollar amount."""
    m = re.search(r"total[^\d$\n]{0,30}" + _AMOUNT, text, re.IGNORECASE)
    if m:
        return _to_float(m.group(1))
    amounts = [_to_float(a) for a in re.findall(r"\$\s?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)", text)]
    return max(amounts) if amounts else None


def _find_payment_terms(text: str) -> str | None:
    m = re.search(r"net\s*(\d+)", text, re.IGNORECASE)
    return f"Net {m.group(1)}" if m else None


def _find_warranty(text: str) -> str | None:
    m = re.search(r"(\d+)[\s-]*(year|month)s?\b[^.\n]{0,20}warranty", text, re.IGNORECASE)
    if not m:
        m = re.search(r"warranty[^\d\n]{0,20}(\d+)[\s-]*(year|month)s?", text, re.IGNORECASE)
    if not m:
        return None
    n, unit = int(m.group(1)), m.group(2).lower()
    return f"{n} {unit}{'s' if n != 1 else ''}"


def _find_delivery_phrase(text: str) -> str | None:
    m = re.search(r"\d+\s*(?:day|week|month)s?", text, re.IGNORECASE)
    return m.group(0) if m else None


def _mock_structure_rfp(text: str) -> StructuredRFP:
    flat = " ".join(text.split())
    items = []
    for qty, noun in re.findall(r"(\d+)\s+([A-Za-z][A-Za-z\-]+)", flat):
        if noun.lower() in _ITEM_STOPWORDS or any(i["name"].lower() == noun.lower() for i in items):
            continue
        items.append({"name": noun, "quantity": int(qty), "specifications": []})
    budget = None
    m = re.search(r"\$\s?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s*(k)?\b", flat, re.IGNORECASE)
    if m:
        budget = _to_float(m.group(1)) * (1000 if m.group(2) else 1)
    deadline = None
    m = re.search(r"\d{4}-\d{2}-\d{2}", flat)
    if m:
        deadline = m.group(0)
    else:
        days = normalize_delivery_to_days(flat)
        if days is not None:
            deadline = (date.today() + timedelta(days=days)).isoformat()
    title = re.split(r"(?<=[.!?])\s", flat, maxsplit=1)[0][:80] or "Untitled RFP"
    data: dict[str, Any] = {
        "title": title,
        "description": flat,
        "budget": budget,
        "deadline": deadline,
        "required_items": items,
    }
    if (terms := _find_payment_terms(flat)):
        data["payment_terms"] = terms
    if (warranty := _find_warranty(flat)):
        data["warranty"] = warranty
    return StructuredRFP.model_validate(data)


def _mock_structure_proposal(text: str) -> StructuredProposal:
    flat = " ".join(text.split())
    total = _find_total(flat)
    delivery = normalize_delivery_to_days(flat)
    warranty = _find_warranty(flat) or ""
    found = sum(x is not None and x != "" for x in (total, delivery, warranty, _find_payment_terms(flat)))
    return StructuredProposal(
        total_price=total,
        delivery_estimate_days=delivery,
        warranty_period=warranty,
        completeness_score=found * 25,
        key_terms_summary=flat[:300],
    )


def _mock_ocr_fields(text: str) -> OCRExtraction:
    flat = " ".join(text.split())
    return OCRExtraction(
        total_amount=_find_total(flat),
        delivery_timeline=_find_delivery_phrase(flat),
        warranty_info=_find_warranty(flat),
        payment_terms=_find_payment_terms(flat),
        additional_notes=flat[:500],
    )


def _mock_rank(rows: list[dict[str, Any]], budget: float | None) -> Recommendation:
    def key(r: dict[str, Any]):
        price = r.get("final_price")
        delivery = r.get("delivery_days")
        return (
            price if price is not None else float("inf"),
            -(r.get("ai_score") or 0),
            delivery if delivery is not None else float("inf"),
        )

    ranked = sorted(rows, key=key)
    best = ranked[0]
    summary = []
    for r in ranked:
        price = r.get("final_price")
        takeaway = "Lowest quoted price." if r is best else "Ranked behind the recommended vendor on price or completeness."
        if price is not None and budget and price > budget:
            takeaway = "Quote exceeds the RFP budget."
        summary.append(VendorComparison(
            vendor_name=r["vendor_name"],
            ai_score=int(min(max(r.get("ai_score") or 0, 0), 100)),
            total_price=price,
            delivery_estimate=r.get("delivery_days"),
            price_confidence=int(r["price_confidence"]) if r.get("price_confidence") is not None else 50,
            key_takeaway=takeaway,
        ))
    return Recommendation(
        recommendation=best["vendor_name"],
        rationale=(
            f"{best['vendor_name']} ranks first on price, then completeness, then delivery "
            f"among {len(rows)} proposal(s). Price confidence for this quote is {best.get('price_confidence', 50)}."
        ),
        comparison_summary=summary,
        action_items=[
            f"Confirm the final quoted total with {best['vendor_name']}.",
            "Agree delivery dates and warranty terms in writing.",
        ],
    )


# --- Task-level entry points ---

RFP_SYSTEM_PROMPT = (
    "You are an expert procurement assistant converting messy natural language requests into structured JSON. "
    "Return ONLY a valid JSON object matching the provided schema, with no introductory text or code fences. "
    "Never add fields that are not in the schema. "
    "List every requested product or service in required_items with its quantity; put item-specific "
    "requirements (e.g. 'delivery within 15 days' for one item) into that item's specifications. "
    "payment_terms and warranty must reflect the user's most specific instruction; keep ranges as stated. "
    "Use null for a missing budget or deadline. If a date is mentioned (e.g. 'March 31st' or 'in 30 days'), "
    "give deadline as an ISO 8601 date (YYYY-MM-DD), today being {today}."
)

PROPOSAL_SYSTEM_PROMPT = (
    "You are a proposal parsing engine. Analyze the vendor's email proposal and extract pricing, terms and "
    "conditions into a JSON object that strictly follows the provided schema. Extract all details accurately, "
    "including a completeness_score (0-100) for how well the proposal covers the request, and a short summary."
)

PDF_ORGANIZE_PROMPT = "Extract and organize pricing, terms, and delivery information from this PDF text."

VISION_PROMPT = (
    "You are an expert at reading and extracting text from vendor quotation documents. Extract ALL text from "
    "this image with extreme accuracy. Include pricing, terms, and delivery info. Format as structured plain text."
)

RANK_SYSTEM_PROMPT = (
    "You are a procurement expert and proposal evaluation engine. Compare all the provided vendor proposals "
    "against the original RFP requirements and the normalized metrics. Determine the best vendor and give a "
    "detailed rationale, following the provided schema strictly. Base the analysis on price, delivery time, "
    "quality (ai_score) and price data confidence. The rationale must mention the price difference, the "
    "delivery difference and the confidence in the data."
)


def structure_rfp(natural_language_input: str) -> StructuredRFP:
    if ai_provider() == "mock":
        logger.info("RFP structuring: no OLLAMA_BASE_URL, using mock")
        return _mock_structure_rfp(natural_language_input)
    system = RFP_SYSTEM_PROMPT.format(today=date.today().isoformat())
    return structured_completion(system, natural_language_input, StructuredRFP)


def structure_proposal(email_text: str) -> StructuredProposal:
    if ai_provider() == "mock":
        logger.info("Proposal parsing: no OLLAMA_BASE_URL, using mock")
        return _mock_structure_proposal(email_text)
    return structured_completion(PROPOSAL_SYSTEM_PROMPT, email_text, StructuredProposal)


def organize_pdf_text(text: str) -> str:
    """Second pass over raw PDF text; falls back to the raw text if the model returns nothing."""
    if ai_provider() == "mock":
        return text
    return complete_text(PDF_ORGANIZE_PROMPT, text) or text


def read_image(image: bytes) -> str:
    """Transcribe a quotation image with the vision model."""
    if ai_provider() == "mock":
        logger.warning("Image OCR requested but no OLLAMA_BASE_URL is configured")
        return "[image OCR unavailable: no vision model configured]"
    try:
        response = _client(_OLLAMA_VISION_TIMEOUT_SEC).chat(
            model=_vision_model(),
            messages=[{"role": "user", "content": VISION_PROMPT, "images": [image]}],
            options={"temperature": _TEMPERATURE},
        )
    except Exception as e:
        raise AIServiceError(f"Vision request failed: {e}") from e
    return _message_text(response)


def extract_ocr_fields(requirements: Any, raw_email: str, combined_text: str) -> OCRExtraction:
    if ai_provider() == "mock":
        return _mock_ocr_fields(combined_text)
    system = (
        "You are an expert at extracting structured pricing and terms data from OCR'd vendor proposal documents.\n\n"
        f"The original RFP requirements were:\n{json.dumps(requirements, indent=2, default=str)}\n\n"
        f"The vendor's email proposal was:\n{(raw_email or '')[:1000]}\n\n"
        "Now you have additional information from OCR'd attachments. Extract any pricing, delivery, warranty, "
        "or terms information and structure it according to the provided schema."
    )
    return structured_completion(system, combined_text, OCRExtraction)


def rank_proposals(
    requirements: Any,
    rows: list[dict[str, Any]],
    budget: float | None,
    deadline_days: int | None,
) -> Recommendation:
    """Ask the model for a ranked recommendation over the normalized proposal dataset."""
    if ai_provider() == "mock":
        logger.info("Proposal ranking: no OLLAMA_BASE_URL, using mock")
        return _mock_rank(rows, budget)
    context = f"""RFP Requirements:
{json.dumps(requirements, indent=2, default=str)}

--- Proposals (Normalized Data for Comparison):
{json.dumps(rows, indent=2, default=str)}

RFP Budget: ${budget if budget else "N/A"}
RFP Deadline (Days from submission): {deadline_days if deadline_days is not None else "N/A"}

INSTRUCTIONS FOR WEIGHTED SCORING:
- Prioritize data with high 'price_confidence'.
- Rank 1: PRICE (lowest final_price gets highest favorability). Penalize proposals far above the RFP Budget.
- Rank 2: COMPLETENESS (highest ai_score gets highest favorability).
- Rank 3: DELIVERY (lowest delivery_days gets highest favorability, especially if beating the RFP Deadline).

The rationale must justify the winner based on these metrics."""
    return structured_completion(RANK_SYSTEM_PROMPT, context, Recommendation)
