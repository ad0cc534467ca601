import logging

from langchain_core.language_models.chat_models import BaseChatModel

from .errors import AnalysisParseError
from .llm import invoke_text
from .models import DEFAULT_PANEL_COUNT, ContentAnalysis
from .parsing import parse_or_default

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are analyzing educational content to create a comprehensive comic summary.

Subject: {subject}

Full Content:
{content}

CRITICAL INSTRUCTIONS:
- This is the COMPLETE content - summarize ALL of it, not just the first section
- Capture the full scope of topics covered throughout the entire document
- Identify ALL main themes and key points from beginning to end
- Think about how many panels are needed to cover the ENTIRE content comprehensively

Provide:
1. Key concepts - extract ALL main topics and themes from the ENTIRE content (as a JSON array)
2. Narrative structure - a comprehensive summary that covers the FULL content from start to finish, organized in a way that would work well as a comic story
3. Suggested number of comic panels - based on how many panels are needed to cover the ENTIRE content (1-12)

Respond in JSON format with this structure:
{{
  "keyConcepts": ["concept1", "concept2", "concept3"],
  "narrativeStructure": "A comprehensive summary covering all the main topics and themes from the entire content, organized for comic presentation",
  "suggestedPanelCount": 4
}}"""


def default_analysis(raw: str) -> ContentAnalysis:
    return ContentAnalysis(
        key_concepts=["Concept 1", "Concept 2", "Concept 3"],
        narrative_structure=raw or "",
        suggested_panel_count=DEFAULT_PANEL_COUNT,
    )


def _coerce_analysis(data) -> ContentAnalysis:
    if not isinstance(data, dict):
        raise AnalysisParseError("Analysis response is not a JSON object")
    if "suggestedPanelCount" in data:
        # Models occasionally answer "6" or 6.0.
        data = {**data, "suggestedPanelCount": int(float(data["suggestedPanelCount"]))}
    return ContentAnalysis.model_validate(data)


class ContentAnalyzer:
    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    def analyze(self, text: str, subject: str) -> ContentAnalysis:
        raw = invoke_text(self.llm, ANALYSIS_PROMPT.format(subject=subject, content=text))
        analysis = parse_or_default(raw, _coerce_analysis, default_analysis, label="content analysis")
        logger.info(
            f"[ContentAnalyzer] {len(analysis.key_concepts)} concept(s), "
            f"suggested {analysis.suggested_panel_count} panel(s)"
        )
        return analysis
