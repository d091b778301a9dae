"""
Prompt templates and system instructions.

Each primary operation has a system instruction and a builder returning the
user prompt. Instructions ask the model to end with the complete revised
code in a single fenced block wherever a revision is expected, which is what
the trailing-block extraction relies on.
"""

from __future__ import annotations

from .session_schema import (
    ChatTurn,
    ContextFile,
    Feature,
    FinalizationSummary,
    Language,
    PrimaryInputs,
    ReviewProfile,
)

SYSTEM_INSTRUCTION = (
    "You are an expert code reviewer. Your feedback is constructive, precise and "
    "actionable. Focus on correctness, security, performance and maintainability. "
    "Format the review in markdown."
)

REVISION_RULE = (
    "End your response with the complete revised code in a single fenced code block. "
    "Nothing may follow that block."
)

PROFILE_INSTRUCTIONS: dict[ReviewProfile, str] = {
    ReviewProfile.SECURITY: "Prioritize security: injection, authentication, secrets handling and unsafe input.",
    ReviewProfile.MODULAR: "Prioritize modularity: separation of concerns, cohesion and clear interfaces.",
    ReviewProfile.IDIOMATIC: "Prioritize idiomatic use of the language and its standard library.",
    ReviewProfile.DRY: "Prioritize removing duplication and consolidating repeated logic.",
}

DEBUG_INSTRUCTION = (
    "You are an expert debugger. Identify the cause of the reported error, explain it "
    f"briefly and fix it. {REVISION_RULE}"
)

AUDIT_INSTRUCTION = (
    "You are a security auditor. Enumerate vulnerabilities with severity, impact and a "
    f"concrete remediation for each. {REVISION_RULE}"
)

COMPARISON_INSTRUCTION = (
    "You compare two codebases that implement related functionality. Describe the "
    "differences, their trade-offs and which approach is preferable for the stated goal."
)

FEATURE_MATRIX_INSTRUCTION = (
    "You reconcile two codebases, A and B. List every distinct feature, stating whether it "
    "is unique to A, unique to B, or common to both. Feature names must be unique."
)

FINALIZATION_INSTRUCTION = (
    "You merge two codebases into one according to explicit per-feature decisions. Keep "
    "included features, drop removed ones and follow the discussion outcome for discussed "
    f"features. {REVISION_RULE}"
)

ROOT_CAUSE_INSTRUCTION = (
    "You perform root cause analysis. Trace the failure to its origin, explain the causal "
    "chain and how the fix addresses it."
)

TESTS_INSTRUCTION = (
    "You write thorough unit tests covering normal paths, edge cases and failure modes. "
    f"{REVISION_RULE}"
)

DOCS_INSTRUCTION = (
    "You write developer documentation. Put each generated document under a markdown "
    "heading naming the file (e.g. `### README.md`), directly followed by a fenced block "
    "holding its content."
)

EXPLAIN_INSTRUCTION = "You explain code clearly and concisely to an experienced developer."

COMMIT_INSTRUCTION = (
    "You write conventional commit messages. Use a type such as feat, fix, refactor, "
    "docs, test or chore, an optional scope, an imperative subject under 72 characters "
    "and a short body describing what changed."
)

VERSION_NAME_INSTRUCTION = "You name saved work sessions with a short descriptive title of at most six words."

FOLLOW_UP_INSTRUCTION = (
    f"{SYSTEM_INSTRUCTION} You are continuing a conversation about your previous analysis. "
    "When you revise the code, end your response with the complete revised code in a "
    "single fenced code block."
)


def _fence(language: Language, code: str) -> str:
    return f"```{language.fence_tag}\n{code}\n```"


def _context_section(files: list[ContextFile]) -> str:
    if not files:
        return ""
    parts = ["\n\n## Project Context"]
    for f in files:
        parts.append(f"### {f.name}\n```\n{f.content}\n```")
    return "\n".join(parts)


def review_system_instruction(profile: ReviewProfile, custom_profile: str = "") -> str:
    """
    System instruction for review mode, with the optional profile focus.

    Args:
        profile: Selected review profile
        custom_profile: Free-text focus used when profile is CUSTOM

    Returns:
        System instruction text
    """
    parts = [SYSTEM_INSTRUCTION]
    if profile is ReviewProfile.CUSTOM and custom_profile.strip():
        parts.append(custom_profile.strip())
    elif profile in PROFILE_INSTRUCTIONS:
        parts.append(PROFILE_INSTRUCTIONS[profile])
    parts.append(REVISION_RULE)
    return " ".join(parts)


def build_review_prompt(inputs: PrimaryInputs, include_context: bool = False) -> str:
    """Build the review prompt for the working code."""
    context = _context_section(inputs.context_files) if include_context else ""
    return f"""Review the following {inputs.language.value} code for bugs, security issues, performance problems and deviations from best practice.

## Code
{_fence(inputs.language, inputs.code)}{context}"""


def build_debug_prompt(inputs: PrimaryInputs, include_context: bool = False) -> str:
    """Build the debug prompt from the code and the reported error."""
    context = _context_section(inputs.context_files) if include_context else ""
    return f"""The following {inputs.language.value} code fails. Find and fix the problem.

## Code
{_fence(inputs.language, inputs.code)}

## Error
{inputs.error_context or "(no error output provided)"}{context}"""


def build_audit_prompt(inputs: PrimaryInputs, include_context: bool = False) -> str:
    context = _context_section(inputs.context_files) if include_context else ""
    return f"""Audit the following {inputs.language.value} code for security vulnerabilities.

## Code
{_fence(inputs.language, inputs.code)}{context}"""


def build_comparison_prompt(inputs: PrimaryInputs) -> str:
    goal = inputs.comparison_goal.strip() or "Identify the stronger implementation."
    return f"""Compare codebase A and codebase B.

## Goal
{goal}

## Codebase A
{_fence(inputs.language, inputs.code)}

## Codebase B
{_fence(inputs.language, inputs.code_b or "")}"""


def build_feature_matrix_prompt(inputs: PrimaryInputs) -> str:
    return f"""List the features of codebase A and codebase B for a merge.

## Codebase A
{_fence(inputs.language, inputs.code)}

## Codebase B
{_fence(inputs.language, inputs.code_b or "")}"""


def _feature_lines(features: list[Feature]) -> str:
    if not features:
        return "- (none)"
    return "\n".join(f"- {f.name} ({f.source.value}): {f.description}" for f in features)


def _transcript_text(turns: list[ChatTurn]) -> str:
    return "\n".join(f"**{turn.role}:** {turn.content}" for turn in turns)


def build_finalization_prompt(
    inputs: PrimaryInputs,
    summary: FinalizationSummary,
    transcripts: dict[str, list[ChatTurn]],
) -> str:
    """
    Build the synthesis prompt for a decision-complete merge.

    Args:
        inputs: Session inputs carrying both codebases
        summary: Features partitioned by decision
        transcripts: Discussion transcript per discussed feature

    Returns:
        Prompt embedding both codebases, the partition and the transcripts
    """
    discussions = "\n\n".join(
        f"### {name}\n{_transcript_text(turns)}" for name, turns in transcripts.items()
    ) or "(none)"
    return f"""Merge codebase A and codebase B into a single {inputs.language.value} codebase.

## Include
{_feature_lines(summary.included)}

## Remove
{_feature_lines(summary.removed)}

## Discussed
{_feature_lines(summary.discussed)}

## Discussion Transcripts
{discussions}

## Codebase A
{_fence(inputs.language, inputs.code)}

## Codebase B
{_fence(inputs.language, inputs.code_b or "")}"""


def build_root_cause_prompt(inputs: PrimaryInputs, analysis: str, fixed_code: str) -> str:
    return f"""Explain the root cause of the failure below and why the fix resolves it.

## Original Code
{_fence(inputs.language, inputs.code)}

## Error
{inputs.error_context or "(no error output provided)"}

## Previous Analysis
{analysis}

## Fixed Code
{_fence(inputs.language, fixed_code)}"""


def build_tests_prompt(language: Language, code: str) -> str:
    return f"""Write unit tests for the following {language.value} code.

## Code
{_fence(language, code)}"""


def build_docs_prompt(language: Language, code: str) -> str:
    return f"""Write a README.md and API documentation for the following {language.value} code.

## Code
{_fence(language, code)}"""


def build_explain_prompt(language: Language, selection: str) -> str:
    return f"""Explain what this {language.value} snippet does.

{_fence(language, selection)}"""


def build_review_selection_prompt(language: Language, selection: str) -> str:
    return f"""Review this {language.value} snippet and suggest improvements.

{_fence(language, selection)}"""


def build_commit_prompt(language: Language, original: str, revised: str) -> str:
    return f"""Write a commit message for the change from the original to the revised code.

## Original
{_fence(language, original)}

## Revised
{_fence(language, revised)}"""


def build_version_name_prompt(kind: str, inputs: PrimaryInputs, output: str | None) -> str:
    excerpt = (output or "")[:2000]
    return f"""Suggest a title for this saved {kind} session.

## Code
{_fence(inputs.language, inputs.code[:2000])}

## Output Excerpt
{excerpt}"""


def feature_discussion_instruction(feature: Feature) -> str:
    """System instruction for a sub-dialogue scoped to one feature."""
    return (
        f"{SYSTEM_INSTRUCTION} You are discussing a single feature of a pending merge: "
        f"'{feature.name}' ({feature.source.value}). {feature.description} "
        "Keep the discussion on how this feature should be handled in the merged code."
    )


__all__ = [
    "AUDIT_INSTRUCTION",
    "COMMIT_INSTRUCTION",
    "COMPARISON_INSTRUCTION",
    "DEBUG_INSTRUCTION",
    "DOCS_INSTRUCTION",
    "EXPLAIN_INSTRUCTION",
    "FEATURE_MATRIX_INSTRUCTION",
    "FINALIZATION_INSTRUCTION",
    "FOLLOW_UP_INSTRUCTION",
    "ROOT_CAUSE_INSTRUCTION",
    "SYSTEM_INSTRUCTION",
    "TESTS_INSTRUCTION",
    "VERSION_NAME_INSTRUCTION",
    "build_audit_prompt",
    "build_commit_prompt",
    "build_comparison_prompt",
    "build_debug_prompt",
    "build_docs_prompt",
    "build_explain_prompt",
    "build_feature_matrix_prompt",
    "build_finalization_prompt",
    "build_review_prompt",
    "build_review_selection_prompt",
    "build_root_cause_prompt",
    "build_tests_prompt",
    "build_version_name_prompt",
    "feature_discussion_instruction",
    "review_system_instruction",
]
