"""
Prompt Builder - Document-Aware Analysis Prompts
================================================

Composes the system and user prompts sent to the completion model.

Each document profile supplies:
- A persona sentence for the model
- Genre guidance split into grammar, style and structure focus lists
- Document-specific category names for grammar, style and structure

Only the focus lines and categories for enabled analyses are included
(readability maps to structure). The JSON response contract is appended to
every system prompt so the decoder always sees the same shape.

Pure: no I/O, no clock, no randomness.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from core.enums import DocumentType
from core.models import AnalysisOptions


@dataclass(frozen=True)
class DocumentProfile:
    """Prompt material for one document genre, split by analysis type."""

    persona: str
    genre: str
    grammar_focus: Tuple[str, ...] = field(default_factory=tuple)
    style_focus: Tuple[str, ...] = field(default_factory=tuple)
    structure_focus: Tuple[str, ...] = field(default_factory=tuple)
    grammar_categories: Tuple[str, ...] = field(default_factory=tuple)
    style_categories: Tuple[str, ...] = field(default_factory=tuple)
    structure_categories: Tuple[str, ...] = field(default_factory=tuple)

    def categories_for(self, options: AnalysisOptions) -> List[Tuple[str, Tuple[str, ...]]]:
        """Enabled category groups in prompt order."""
        groups = []
        if options.include_grammar:
            groups.append(("grammar", self.grammar_categories))
        if options.include_style:
            groups.append(("style", self.style_categories))
        if options.include_readability:
            groups.append(("structure", self.structure_categories))
        return groups

    def focus_for(self, options: AnalysisOptions) -> List[str]:
        """Genre guidance for the enabled analyses only."""
        focus: List[str] = []
        if options.include_grammar:
            focus.extend(self.grammar_focus)
        if options.include_style:
            focus.extend(self.style_focus)
        if options.include_readability:
            focus.extend(self.structure_focus)
        return focus


# =============================================================================
# DOCUMENT PROFILES
# =============================================================================

DOCUMENT_PROFILES: Dict[DocumentType, DocumentProfile] = {
    DocumentType.CREATIVE_WRITING: DocumentProfile(
        persona=(
            "You are a creative writing coach for ESL students. Analyze creative writing and "
            "provide specific, actionable suggestions."
        ),
        genre="creative writing",
        grammar_focus=(
            "Narrative tense consistency",
            "Creative use of punctuation for effect",
        ),
        style_focus=(
            "Character voice consistency and authenticity",
            "Dialogue that sounds natural and advances the story",
            "Show vs. tell techniques (use concrete details instead of abstract statements)",
            "Sensory details to immerse readers",
            "Pacing and rhythm in sentence structure",
            "Point of view consistency throughout the narrative",
        ),
        structure_focus=("Effective scene transitions and story structure",),
        style_categories=(
            "character-voice-consistency",
            "dialogue-authenticity",
            "show-vs-tell",
            "sensory-details",
            "pacing-rhythm",
            "point-of-view-consistency",
        ),
        grammar_categories=(
            "dialogue-punctuation",
            "narrative-tense-consistency",
            "creative-fragments",
            "internal-thought-formatting",
        ),
        structure_categories=(
            "scene-transitions",
            "hook-effectiveness",
            "conflict-escalation",
            "resolution-pacing",
        ),
    ),
    DocumentType.ACADEMIC: DocumentProfile(
        persona=(
            "You are an academic writing tutor for ESL students. Analyze academic papers and "
            "provide specific, actionable suggestions."
        ),
        genre="academic writing",
        grammar_focus=(
            "Proper verb tenses for discussing research",
            "Appropriate use of academic language and terminology",
        ),
        style_focus=(
            "Clear and arguable thesis statements",
            "Proper integration of citations and evidence",
            "Objective, scholarly tone (avoid first person)",
            "Evidence-to-claim ratio and analysis depth",
        ),
        structure_focus=(
            "Logical argument structure and flow",
            "Smooth transitions between ideas and paragraphs",
            "Strong introductions and conclusions",
            "Clear paragraph unity and coherence",
        ),
        style_categories=(
            "thesis-clarity",
            "argument-structure",
            "citation-integration",
            "objective-tone",
            "idea-transitions",
            "evidence-analysis",
        ),
        grammar_categories=(
            "academic-voice",
            "research-tense-usage",
            "conditional-language",
            "passive-voice-appropriateness",
        ),
        structure_categories=(
            "introduction-effectiveness",
            "paragraph-unity",
            "conclusion-strength",
            "section-organization",
        ),
    ),
    DocumentType.BUSINESS: DocumentProfile(
        persona=(
            "You are a business writing consultant for ESL professionals. Analyze business "
            "documents and provide specific, actionable suggestions."
        ),
        genre="business writing",
        grammar_focus=(
            "Active voice preference for authority and clarity",
            "Parallel structure in lists and bullet points",
            "Proper business email and document conventions",
        ),
        style_focus=(
            "Professional and appropriate tone for the audience",
            "Action-oriented, results-focused language",
            "Conciseness without sacrificing clarity",
            "Clear calls to action and next steps",
        ),
        structure_focus=(
            "Prominent placement of key information",
            "Logical flow that serves business objectives",
            "Audience-focused content and tone",
        ),
        style_categories=(
            "professional-tone",
            "action-oriented-language",
            "conciseness-optimization",
            "stakeholder-appropriate-formality",
            "call-to-action-clarity",
            "executive-summary-effectiveness",
        ),
        grammar_categories=(
            "active-voice-preference",
            "email-conventions",
            "parallel-structure",
            "business-punctuation",
        ),
        structure_categories=(
            "key-points-prominence",
            "professional-formatting",
            "logical-flow",
            "audience-focus",
        ),
    ),
    DocumentType.SCRIPT: DocumentProfile(
        persona=(
            "You are a screenwriting coach for ESL students. Analyze scripts and provide "
            "specific, actionable suggestions."
        ),
        genre="script writing",
        grammar_focus=(
            "Proper script formatting conventions",
            "Present tense consistency in action descriptions",
            "Character name consistency throughout",
        ),
        style_focus=(
            "Distinct character voices that differentiate speakers",
            "Natural, realistic dialogue that serves the story",
            "Clear, concise stage directions and action lines",
            "Subtext and implied meaning in dialogue",
        ),
        structure_focus=(
            "Efficient scene setup and character introductions",
            "Balance between dialogue and action",
            "Dramatic pacing and tension building",
        ),
        style_categories=(
            "character-voice-differentiation",
            "dialogue-naturalism",
            "stage-direction-clarity",
            "action-line-efficiency",
            "subtext-development",
        ),
        grammar_categories=(
            "script-formatting",
            "present-tense-consistency",
            "character-name-consistency",
            "action-description-style",
        ),
        structure_categories=(
            "scene-setup",
            "dialogue-action-balance",
            "character-introduction-timing",
            "dramatic-pacing",
        ),
    ),
    DocumentType.ESSAY: DocumentProfile(
        persona=(
            "You are an essay writing tutor for ESL students. Analyze essays and provide "
            "specific, actionable suggestions."
        ),
        genre="essay writing",
        grammar_focus=(
            "Formal essay tone and language",
            "Complex sentence structures for sophisticated ideas",
            "Effective transition words and phrases",
        ),
        style_focus=(
            "Strong thesis development and argumentation",
            "Clear presentation of evidence and examples",
            "Effective use of persuasive techniques",
            "Proper handling of counter-arguments",
        ),
        structure_focus=(
            "Strong introduction hooks and impactful conclusions",
            "Logical body paragraph organization",
            "Overall coherence and flow",
        ),
        style_categories=(
            "thesis-development",
            "argument-clarity",
            "evidence-presentation",
            "persuasive-techniques",
            "counter-argument-handling",
        ),
        grammar_categories=(
            "formal-essay-tone",
            "complex-sentence-structure",
            "transition-words",
            "pronoun-consistency",
        ),
        structure_categories=(
            "introduction-hook",
            "body-paragraph-organization",
            "conclusion-impact",
            "overall-coherence",
        ),
    ),
    DocumentType.EMAIL: DocumentProfile(
        persona=(
            "You are a professional email writing consultant for ESL professionals. Analyze "
            "emails and provide specific, actionable suggestions."
        ),
        genre="email writing",
        grammar_focus=(
            "Proper email punctuation and formatting",
            "Clear salutations and signature blocks",
            "Appropriate references to attachments or links",
        ),
        style_focus=(
            "Clear, descriptive subject lines",
            "Appropriate opening and closing for the relationship",
            "Concise message that respects recipient's time",
            "Professional tone appropriate to the context",
        ),
        structure_focus=(
            "Logical information hierarchy (most important first)",
            "Clear action items and response requirements",
            "Professional formatting and structure",
        ),
        style_categories=(
            "subject-line-clarity",
            "opening-appropriateness",
            "message-conciseness",
            "closing-professionalism",
            "tone-appropriateness",
        ),
        grammar_categories=(
            "email-punctuation",
            "salutation-format",
            "signature-format",
            "attachment-references",
        ),
        structure_categories=(
            "information-hierarchy",
            "action-items-clarity",
            "response-requirements",
            "professional-formatting",
        ),
    ),
    DocumentType.GENERAL: DocumentProfile(
        persona=(
            "You are a general writing tutor for ESL students. Analyze text and provide "
            "specific, actionable suggestions."
        ),
        genre="general writing",
        grammar_focus=(
            "Basic grammar rule compliance",
            "Subject-verb agreement",
            "Proper punctuation usage",
        ),
        style_focus=(
            "Overall clarity and communication effectiveness",
            "Precise word choice and vocabulary",
            "Sentence variety and structure",
            "Consistent tone throughout",
            "Audience-appropriate language and style",
        ),
        structure_focus=(
            "Logical paragraph organization and flow",
            "Clear introductions and conclusions",
            "Adequate supporting details and examples",
        ),
        style_categories=(
            "clarity-improvement",
            "word-choice-precision",
            "sentence-variety",
            "tone-consistency",
            "audience-awareness",
        ),
        grammar_categories=(
            "basic-grammar-rules",
            "sentence-structure",
            "punctuation-usage",
            "verb-agreement",
        ),
        structure_categories=(
            "paragraph-organization",
            "logical-flow",
            "introduction-conclusion",
            "supporting-details",
        ),
    ),
}


# =============================================================================
# RESPONSE CONTRACT
# =============================================================================

RESPONSE_FORMAT = """

Return valid JSON only with this exact structure:
{
  "grammarSuggestions": [
    {
      "id": "unique_id",
      "type": "grammar",
      "severity": "low|medium|high",
      "startOffset": 0,
      "endOffset": 5,
      "originalText": "text",
      "suggestedText": "fixed text",
      "explanation": "Brief explanation",
      "category": "grammar",
      "documentSpecificCategory": "document-specific-category-name",
      "confidence": 0.9
    }
  ],
  "styleSuggestions": [
    {
      "id": "unique_id",
      "type": "style",
      "severity": "low|medium|high",
      "startOffset": 0,
      "endOffset": 5,
      "originalText": "text",
      "suggestedText": "improved text",
      "explanation": "Brief explanation",
      "category": "style",
      "documentSpecificCategory": "document-specific-category-name",
      "confidence": 0.8
    }
  ],
  "readabilitySuggestions": [
    {
      "id": "unique_id",
      "type": "readability",
      "severity": "low|medium|high",
      "startOffset": 0,
      "endOffset": 5,
      "originalText": "text",
      "suggestedText": "simpler text",
      "explanation": "Brief explanation",
      "category": "readability",
      "documentSpecificCategory": "document-specific-category-name",
      "confidence": 0.7
    }
  ],
  "readabilityMetrics": {
    "fleschScore": 50,
    "gradeLevel": 12,
    "avgSentenceLength": 15,
    "avgSyllablesPerWord": 1.5,
    "wordCount": 100,
    "sentenceCount": 5,
    "complexWordsPercent": 15
  }
}

IMPORTANT: Use documentSpecificCategory values from the specific document type categories \
provided. Provide actual suggestions when issues are found. Return empty arrays only if no \
issues exist."""


def profile_for(document_type: DocumentType) -> DocumentProfile:
    return DOCUMENT_PROFILES[document_type.prompt_profile]


class PromptBuilder:
    """
    Builds ``(system_prompt, user_prompt)`` pairs.

    Full analyses get the genre focus lines for the enabled checks; lightweight
    (real-time) analyses get a compact persona and stricter category
    wording so short completions stay on-contract.
    """

    def build(
        self, options: AnalysisOptions, text: str, *, lightweight: bool = False
    ) -> Tuple[str, str]:
        return self.system_prompt(options, lightweight=lightweight), self.user_prompt(
            text, lightweight=lightweight
        )

    def system_prompt(self, options: AnalysisOptions, *, lightweight: bool = False) -> str:
        if lightweight:
            return self._lightweight_system_prompt(options)
        return self._full_system_prompt(options)

    def user_prompt(self, text: str, *, lightweight: bool = False) -> str:
        if lightweight:
            return f'Quick analysis:\n\n"{text}"\n\nJSON only with documentSpecificCategory.'
        return (
            f'Analyze this text:\n\n"{text}"'
            "\n\nReturn JSON only with accurate character positions and appropriate "
            "documentSpecificCategory values."
        )

    def _full_system_prompt(self, options: AnalysisOptions) -> str:
        document_type = options.effective_document_type
        profile = profile_for(document_type)

        parts = [profile.persona]
        if options.audience_level:
            parts.append(f" Focus on {options.audience_level.value} level suggestions.")
        focus = profile.focus_for(options)
        if focus:
            parts.append(f"\n\nFor {profile.genre}, focus on:")
            parts.extend(f"\n- {line}" for line in focus)

        groups = profile.categories_for(options)
        if groups:
            parts.append(
                f"\n\nFor this {document_type.value} document, pay special attention to these categories:"
            )
            for name, categories in groups:
                parts.append(
                    f"\n\n{name.upper()} suggestions should use these document-specific categories:"
                )
                parts.extend(f"\n- {category}" for category in categories)

        parts.append(RESPONSE_FORMAT)
        return "".join(parts)

    def _lightweight_system_prompt(self, options: AnalysisOptions) -> str:
        document_type = options.effective_document_type
        profile = profile_for(document_type)

        parts = [f"{profile.persona} Perform quick analysis and provide helpful suggestions."]

        checks = [
            name
            for name, enabled in (
                ("grammar", options.include_grammar),
                ("style", options.include_style),
                ("readability", options.include_readability),
            )
            if enabled
        ]
        if checks:
            parts.append(f" Analyze for: {', '.join(checks)}.")

        groups = profile.categories_for(options)
        if groups:
            parts.append(
                f"\n\nFor this {document_type.value} document, use these specific "
                "documentSpecificCategory values:"
            )
            for name, categories in groups:
                parts.append(
                    f"\n\n{name.upper()} suggestions must use these exact "
                    "documentSpecificCategory values:"
                )
                parts.extend(f"\n- {category}" for category in categories)

        parts.append(
            f"\n\nFind actual issues and provide specific suggestions for {document_type.value} writing."
        )
        parts.append(RESPONSE_FORMAT)
        parts.append(
            "\n\nIMPORTANT: Use ONLY the specific documentSpecificCategory values listed above. "
            f'Do NOT use generic categories like "{document_type.value}" or "academic-writing".'
        )
        return "".join(parts)


__all__ = ["PromptBuilder", "DocumentProfile", "DOCUMENT_PROFILES", "RESPONSE_FORMAT", "profile_for"]
