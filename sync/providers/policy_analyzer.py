"""
LLM-backed extraction of pet travel policies.

The model is asked for a raw JSON object (pet policy) or a JSON array of
two objects (country arrival and transit policy). Responses are parsed
with a tolerant multi-step parser because models regularly wrap JSON in
markdown fences, add trailing commas or surround it with prose.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from core.config import settings
from core.exceptions import ConfigurationError, ResponseFormatError
from sync.providers.http import request_json

logger = logging.getLogger(__name__)

PET_POLICY_SYSTEM_PROMPT = (
    "You are a helpful assistant specializing in analyzing airline pet policies. "
    "You prioritize finding official policies from airline websites and documents. "
    "Focus on extracting key information about pet travel requirements and restrictions. "
    "Return ONLY a raw JSON object, with no markdown formatting or explanations."
)

PET_POLICY_PROMPT = """Analyze the pet policy of {airline_name} ({iata_code}) and return ONLY this JSON object:
{{
  "airline_info": {{
    "official_website": "main airline website URL",
    "pet_policy_url": "DIRECT URL of the pet travel policy page (not the homepage)"
  }},
  "pet_policy": {{
    "pet_types_allowed": ["allowed pets, say whether in cabin or cargo"],
    "size_restrictions": {{
      "max_weight_cabin": "weight in kg/lbs",
      "max_weight_cargo": "weight in kg/lbs",
      "carrier_dimensions_cabin": "size limits"
    }},
    "carrier_requirements_cabin": "carrier requirements for cabin travel",
    "carrier_requirements_cargo": "carrier requirements for cargo travel",
    "documentation_needed": ["every required document"],
    "fees": {{"in_cabin": "fee amount", "cargo": "fee amount"}},
    "temperature_restrictions": "temperature or weather restrictions",
    "breed_restrictions": ["restricted breeds"]
  }}
}}
Use null for anything that cannot be found."""

COUNTRY_POLICY_SYSTEM_PROMPT = (
    "You are a helpful assistant specializing in finding official government pet and live animal "
    "import policies. You understand the distinction between arrival policies (pets entering the "
    "country) and transit policies (pets passing through the country). Prefer government sources. "
    "Return ONLY raw JSON, with no markdown formatting or explanations."
)

COUNTRY_POLICY_PROMPT = """For {country_name}'s pet import and transit requirements return ONLY a JSON array
with TWO objects, one with "policy_type": "pet_arrival" and one with "policy_type": "pet_transit":
{{
  "policy_type": "pet_arrival",
  "title": "official name of the policy",
  "description": "comprehensive overview",
  "requirements": ["every requirement and test"],
  "documentation_needed": ["every required document"],
  "fees": {{"description": "fee details"}},
  "restrictions": {{"description": "limitations or special conditions"}},
  "quarantine_requirements": "quarantine information",
  "vaccination_requirements": ["each required vaccination"],
  "additional_notes": "source authority and last verified date",
  "policy_url": "direct URL of the policy"
}}
If a type has no specific requirements, say "No specific policy found for this type" in the description."""

_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


def parse_json_content(content: str) -> Any:
    """
    Parse JSON from an LLM response.

    Steps: direct parse, fence stripping, trailing-comma cleanup, then
    extraction of the outermost array or object from surrounding text.

    Raises:
        ResponseFormatError: When no step yields valid JSON
    """
    if content is None or not str(content).strip():
        raise ResponseFormatError("Empty response content")

    text = str(content).strip()
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Direct JSON parse failed, cleaning content")

    cleaned = _FENCE.sub("", text).strip()
    cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)
    try:
        return json.loads(cleaned)
    except ValueError:
        logger.debug("Cleaned JSON parse failed, extracting embedded JSON")

    for pattern in (_ARRAY, _OBJECT):
        match = pattern.search(cleaned)
        if match:
            try:
                return json.loads(match.group(0))
            except ValueError:
                continue

    raise ResponseFormatError(
        "Could not parse JSON from model response",
        context={"content_preview": text[:200]}
    )


def normalize_pet_policy(content: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the model's pet policy answer into PetPolicyCreate fields"""
    if not isinstance(content, dict) or not isinstance(content.get("pet_policy"), dict):
        raise ResponseFormatError(
            "Pet policy response is missing the pet_policy object",
            context={"keys": sorted(content) if isinstance(content, dict) else None}
        )

    policy = content["pet_policy"]
    info = content.get("airline_info") if isinstance(content.get("airline_info"), dict) else {}
    size = policy.get("size_restrictions") if isinstance(policy.get("size_restrictions"), dict) else {}
    fees = policy.get("fees") if isinstance(policy.get("fees"), dict) else {}

    return {
        "pet_types_allowed": policy.get("pet_types_allowed"),
        "size_restrictions": {
            "max_weight_cabin": size.get("max_weight_cabin"),
            "max_weight_cargo": size.get("max_weight_cargo"),
            "carrier_dimensions_cabin": size.get("carrier_dimensions_cabin"),
        },
        "carrier_requirements_cabin": policy.get("carrier_requirements_cabin"),
        "carrier_requirements_cargo": policy.get("carrier_requirements_cargo"),
        "documentation_needed": policy.get("documentation_needed"),
        "fees": {"in_cabin": fees.get("in_cabin"), "cargo": fees.get("cargo")},
        "temperature_restrictions": policy.get("temperature_restrictions"),
        "breed_restrictions": policy.get("breed_restrictions"),
        "policy_url": info.get("pet_policy_url"),
        "official_website": info.get("official_website"),
    }


def normalize_country_policies(content: Any) -> List[Dict[str, Any]]:
    """Accept an array, a single object, or an object wrapping a 'policies' array"""
    if isinstance(content, dict):
        content = content.get("policies", [content])
    if not isinstance(content, list):
        raise ResponseFormatError("Country policy response is not a list of policies")
    policies = [p for p in content if isinstance(p, dict) and p.get("policy_type")]
    if not policies:
        raise ResponseFormatError("Country policy response contains no typed policies")
    return policies


class PolicyAnalyzer:
    """
    Chat-completions client for policy extraction.

    Attributes:
        model: Model name (web-search capable models get web_search_options)
        base_url: OpenAI-compatible API base URL
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self._client = client
        self._owns_client = client is None

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Send one chat completion and return the message content"""
        if not self.api_key:
            raise ConfigurationError(
                "LLM API key is not configured",
                context={"provider": "policy_analyzer", "missing": "OPENAI_API_KEY"}
            )
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": 2000,
        }
        if "search" in self.model:
            body["web_search_options"] = {"search_context_size": "medium"}
        else:
            body["temperature"] = 0.1

        data = await request_json(
            self._client,
            "POST",
            f"{self.base_url}/chat/completions",
            "policy_analyzer",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=body,
            timeout=self.timeout
        )

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseFormatError(
                "Invalid response format from LLM API",
                context={"provider": "policy_analyzer", "model": self.model},
                original_exception=e
            )

    async def analyze_pet_policy(self, airline_name: str, iata_code: str = "") -> Dict[str, Any]:
        logger.info(f"Analyzing pet policy for airline: {airline_name}")
        raw = await self.complete(
            PET_POLICY_SYSTEM_PROMPT,
            PET_POLICY_PROMPT.format(airline_name=airline_name, iata_code=iata_code)
        )
        result = normalize_pet_policy(parse_json_content(raw))
        result["raw_api_response"] = raw
        return result

    async def analyze_country_policies(self, country_name: str) -> List[Dict[str, Any]]:
        logger.info(f"Analyzing pet import policies for country: {country_name}")
        raw = await self.complete(
            COUNTRY_POLICY_SYSTEM_PROMPT,
            COUNTRY_POLICY_PROMPT.format(country_name=country_name)
        )
        return normalize_country_policies(parse_json_content(raw))

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
