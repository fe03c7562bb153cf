"""AI content analysis for new ads.

This module handles:
- Scoring ad content on a 0-10 moderation scale
- Assigning tags from the controlled vocabulary
- Falling back to separate moderation and tagging calls when the combined call fails
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ai import AIError
from .exceptions import AnalysisError, ModerationError, TaggingError
from .models import CreateAdRequest
from .parser import parse_json_response, looks_like_refusal
from .tags import AVAILABLE_TAGS, MAX_TAGS, normalize_tags

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = '@cf/meta/llama-3.2-3b-instruct'

VISIBILITY_THRESHOLD = 5
FAIL_OPEN_SCORE = 10

REFUSAL_REASON = "AI refused to process content - likely illegal or highly inappropriate"
FAIL_OPEN_REASON = "Moderation unavailable - published without AI review"
TAGS_REQUIRED_MESSAGE = "Failed to generate tags. Tag generation is required for ad creation."

_TAG_LIST = ', '.join(AVAILABLE_TAGS)

_RUBRIC = """Score the ad from 0 to 10:
10 - Clearly safe, ordinary commerce or community content.
7-9 - Safe but with minor issues such as aggressive marketing or vague claims.
5-6 - Borderline: mature themes that are acceptable when age restricted, or unclear offers.
3-4 - Likely inappropriate: misleading health or financial claims, adult content without an age restriction.
1-2 - Harmful: scams, harassment, hateful or explicit content.
0 - Illegal: weapons or drug sales, exploitation, fraud, or anything involving minors and adult themes.

Age restrictions matter. Adult-oriented content that sets a minimum age of 18 or higher can score 5 or more;
the same content without an age restriction must score below 5."""

_TAG_RULES = f"""Choose between 2 and {MAX_TAGS} tags that describe the ad, using ONLY these values:
{_TAG_LIST}
Never invent tags. Use "looking-for" when the author is searching for something rather than offering it."""

COMBINED_SYSTEM_PROMPT = f"""You are a content moderator and classifier for a classified ads board.

{_RUBRIC}

{_TAG_RULES}
If the score is 0, return an empty tag list.

Respond with a single JSON object and nothing else:
{{"score": <integer 0-10>, "reasons": [<short strings>] or null, "tags": [<tags>]}}"""

MODERATION_SYSTEM_PROMPT = f"""You are a content moderator for a classified ads board.

{_RUBRIC}

Respond with a single JSON object and nothing else:
{{"score": <integer 0-10>, "reasons": [<short strings>] or null}}"""

TAG_SYSTEM_PROMPT = f"""You are a classifier for a classified ads board.

{_TAG_RULES}

Respond with a single JSON object and nothing else:
{{"tags": [<tags>]}}"""

@dataclass
class ModerationResult:
    score: int
    visible: bool
    reasons: List[str] = field(default_factory=list)

@dataclass
class AnalysisResult:
    score: int
    visible: bool
    reasons: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    fallback_used: bool = False

def build_user_message(request: CreateAdRequest) -> str:
    """Render the dynamic ad fields the model is asked to judge.
    
    Age bounds are always stated, including the absence of any restriction.
    """
    lines = [f"Title: {request.title}"]
    if request.description:
        lines.append(f"Description: {request.description}")
    if request.call_to_action:
        lines.append(f"Call to Action: {request.call_to_action}")
    if request.location:
        lines.append(f"Location: {request.location}")
    if request.interests:
        lines.append(f"Interests: {', '.join(request.interests)}")

    if request.min_age is None and request.max_age is None:
        lines.append("Age Restriction: None")
    else:
        lines.append(f"Minimum Age: {request.min_age if request.min_age is not None else 'None'}")
        lines.append(f"Maximum Age: {request.max_age if request.max_age is not None else 'None'}")

    message = '\n'.join(lines).strip()
    return message or "(empty ad content)"

def validate_score(raw: Any) -> int:
    """Return the score as an integer in [0, 10], rounding half up."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or math.isnan(raw):
        raise AnalysisError(f"Invalid score: expected a number, got {raw!r}")
    if raw < 0 or raw > 10:
        raise AnalysisError(f"Invalid score: {raw} is outside 0-10")
    return int(math.floor(raw + 0.5))

def _reasons(value: Dict[str, Any]) -> List[str]:
    reasons = value.get('reasons')
    if not isinstance(reasons, list):
        return []
    return [str(reason) for reason in reasons if reason]

class ContentAnalyzer:
    """Moderates and tags ad content with a text-generation model."""

    def __init__(
        self,
        ai_client,
        model: str = DEFAULT_TEXT_MODEL,
        analysis_max_tokens: int = 300,
        moderation_max_tokens: int = 200,
        tag_max_tokens: int = 200
    ):
        self.ai_client = ai_client
        self.model = model
        self.analysis_max_tokens = analysis_max_tokens
        self.moderation_max_tokens = moderation_max_tokens
        self.tag_max_tokens = tag_max_tokens

    async def _complete(self, system: str, user: str, max_tokens: int) -> Any:
        try:
            return await asyncio.to_thread(self.ai_client.generate, self.model, system, user, max_tokens)
        except AIError as e:
            raise AnalysisError(f"AI request failed: {e}") from e

    async def analyze(self, request: CreateAdRequest) -> AnalysisResult:
        """Score and tag an ad with a single model call.
        
        Returns:
            AnalysisResult; refusals come back as score 0 with no tags
            
        Raises:
            AnalysisError: Call failed, output unparseable, or fields invalid
        """
        raw = await self._complete(
            COMBINED_SYSTEM_PROMPT, build_user_message(request), self.analysis_max_tokens
        )
        parsed = parse_json_response(raw)
        if not parsed.ok:
            if looks_like_refusal(parsed.text):
                logger.warning(f"Model refused to analyze ad {request.title!r}")
                return AnalysisResult(0, False, [REFUSAL_REASON], [])
            raise AnalysisError(parsed.reason)

        score = validate_score(parsed.value.get('score'))
        raw_tags = parsed.value.get('tags')
        if not isinstance(raw_tags, list):
            raise AnalysisError("Invalid tags: expected an array")

        tags = normalize_tags(raw_tags) if score > 0 else []
        return AnalysisResult(score, score >= VISIBILITY_THRESHOLD, _reasons(parsed.value), tags)

    async def moderate(self, request: CreateAdRequest) -> ModerationResult:
        """Score an ad without tagging it.
        
        Raises:
            ModerationError: Call failed or no valid score was returned
        """
        try:
            raw = await self._complete(
                MODERATION_SYSTEM_PROMPT, build_user_message(request), self.moderation_max_tokens
            )
        except AnalysisError as e:
            raise ModerationError(str(e)) from e

        parsed = parse_json_response(raw)
        if not parsed.ok:
            if looks_like_refusal(parsed.text):
                logger.warning(f"Model refused to moderate ad {request.title!r}")
                return ModerationResult(0, False, [REFUSAL_REASON])
            raise ModerationError(parsed.reason)

        try:
            score = validate_score(parsed.value.get('score'))
        except AnalysisError as e:
            raise ModerationError(str(e)) from e
        return ModerationResult(score, score >= VISIBILITY_THRESHOLD, _reasons(parsed.value))

    async def generate_tags(self, request: CreateAdRequest) -> List[str]:
        """Ask the model for vocabulary tags only.
        
        Returns:
            Normalized tags; empty if the model refused
            
        Raises:
            TaggingError: Call failed or output unusable
        """
        try:
            raw = await self._complete(
                TAG_SYSTEM_PROMPT, build_user_message(request), self.tag_max_tokens
            )
        except AnalysisError as e:
            raise TaggingError(str(e)) from e

        parsed = parse_json_response(raw)
        if not parsed.ok:
            if looks_like_refusal(parsed.text):
                logger.warning(f"Model refused to tag ad {request.title!r}")
                return []
            raise TaggingError(parsed.reason)

        raw_tags = parsed.value.get('tags')
        if not isinstance(raw_tags, list):
            raise TaggingError("Invalid tags: expected an array")
        return normalize_tags(raw_tags)

    async def _required_tags(self, request: CreateAdRequest) -> List[str]:
        try:
            tags = await self.generate_tags(request)
        except TaggingError as e:
            logger.error(f"Tag generation failed: {e}")
            raise TaggingError(TAGS_REQUIRED_MESSAGE) from e
        if not tags:
            raise TaggingError(TAGS_REQUIRED_MESSAGE)
        return tags

    async def _analyze_separately(self, request: CreateAdRequest) -> AnalysisResult:
        moderation, tags = await asyncio.gather(
            self.moderate(request),
            self._required_tags(request),
            return_exceptions=True
        )

        if isinstance(moderation, BaseException):
            if not isinstance(moderation, AnalysisError):
                raise moderation
            logger.error(f"Moderation unavailable, failing open: {moderation}")
            moderation = ModerationResult(FAIL_OPEN_SCORE, True, [FAIL_OPEN_REASON])

        if moderation.score == 0:
            return AnalysisResult(0, False, moderation.reasons, [], fallback_used=True)

        if isinstance(tags, BaseException):
            raise tags
        return AnalysisResult(moderation.score, moderation.visible, moderation.reasons, tags, fallback_used=True)

    async def analyze_with_fallback(self, request: CreateAdRequest) -> AnalysisResult:
        """Analyze an ad, degrading gracefully when the model misbehaves.
        
        The combined call is tried first. If it fails, moderation and tagging
        run as separate calls; a moderation failure fails open (score 10),
        while missing tags on non-zero-score content is always an error.
        
        Raises:
            TaggingError: No usable tags for content that is not auto-hidden
        """
        try:
            result = await self.analyze(request)
        except AnalysisError as e:
            logger.warning(f"Combined analysis failed, falling back to separate calls: {e}")
            return await self._analyze_separately(request)

        if result.score > 0 and not result.tags:
            logger.warning("Combined analysis returned no usable tags, requesting tags separately")
            result.tags = await self._required_tags(request)
        return result
