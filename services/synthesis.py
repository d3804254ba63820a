from typing import AsyncIterator, Dict, List, Optional, Sequence
import logging

from config import settings
from models.internal import AccountContext, AnalysisKind, CallAnalysisBundle, StakeholderRecord
from models.responses import INDUSTRIES, DecisionProcess, NarrativeInsights
from utils.text import collapse_whitespace, excerpt, format_money

logger = logging.getLogger(__name__)

INSIGHTS_TOOL_NAME = "submit_account_insights"


# ═══════════════════════════════════════════════════════════
#  Prompts
# ═══════════════════════════════════════════════════════════

INSIGHTS_SYSTEM_PROMPT = """You are a senior B2B sales analyst. Your task is to analyze ALL available data about an account (calls, emails, stakeholders) and generate comprehensive, actionable insights.

Analyze the provided data and extract:

1. **business_context**: 2-3 sentences summarizing what this company does, their industry, and current situation based on all communications.

2. **pain_points**: Array of specific pain points or challenges mentioned across ALL communications (calls AND emails). Be specific - not "they need better software" but "struggling with manual data entry taking 4 hours daily".

3. **decision_process**:
   - stakeholders: Key people involved in the decision (from calls, emails, and stakeholder data)
   - timeline: Any timeline or urgency signals mentioned
   - budget_signals: Any budget or pricing discussions

4. **competitors_mentioned**: Array of competitor names mentioned in any communication.

5. **communication_summary**: 2-3 sentences summarizing recent email exchanges and their tone/outcome. What's the current state of the conversation?

6. **key_opportunities**: Array of 2-3 specific opportunities identified from the data that the rep should pursue.

7. **relationship_health**: A brief assessment of the overall relationship based on communication patterns, response rates, and stakeholder engagement.

8. **industry**: Determine the most likely industry for this account based on the communications. Must be one of: """ + ", ".join(INDUSTRIES) + """. Only set if you're confident based on evidence in the communications.

Be concise but specific. Base everything on actual data provided, don't make assumptions."""

INSIGHTS_TOOL = {
    "type": "function",
    "function": {
        "name": INSIGHTS_TOOL_NAME,
        "description": "Submit the analyzed account insights",
        "parameters": {
            "type": "object",
            "properties": {
                "business_context": {"type": "string", "description": "2-3 sentences about the company"},
                "pain_points": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Specific pain points mentioned",
                },
                "decision_process": {
                    "type": "object",
                    "properties": {
                        "stakeholders": {"type": "array", "items": {"type": "string"}},
                        "timeline": {"type": "string"},
                        "budget_signals": {"type": "string"},
                    },
                },
                "competitors_mentioned": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Competitor names mentioned",
                },
                "communication_summary": {"type": "string", "description": "Summary of recent communications"},
                "key_opportunities": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "2-3 specific opportunities",
                },
                "relationship_health": {"type": "string", "description": "Brief relationship assessment"},
                "industry": {
                    "type": "string",
                    "enum": INDUSTRIES,
                    "description": "The industry of the account based on communications",
                },
            },
            "required": ["business_context"],
        },
    },
}

INSIGHTS_TASK = """## TASK
Analyze ALL the data above and generate comprehensive account insights. Focus on:
1. Understanding their business and situation
2. Identifying ALL pain points mentioned
3. Mapping the decision process
4. Noting any competitors
5. Summarizing recent communication state
6. Identifying opportunities for the rep"""

BRIEF_TASK = """## TASK
Write the pre-call brief for the rep's next conversation with this account."""

BRIEF_SYSTEM_PROMPT = """You are a sales coach preparing a rep for their next conversation with this account.

Using ONLY the account data provided, write a short pre-call brief in plain text:
- Where the deal stands right now (1-2 sentences)
- The open gaps the rep must close on this call
- Who to engage and how, based on the stakeholders and prospect persona
- 2-3 specific questions to ask

Be direct and specific. Do not invent facts that are not in the data."""


# ═══════════════════════════════════════════════════════════
#  Context construction
# ═══════════════════════════════════════════════════════════

def _stakeholder_line(s: StakeholderRecord) -> str:
    line = f"- {s.name}"
    if s.job_title:
        line += f" ({s.job_title})"
    line += f" - {s.influence_level or 'unknown influence'}"
    if s.champion_score:
        line += f", Champion: {s.champion_score:g}/10"
    if s.is_primary_contact:
        line += " [PRIMARY]"
    return line


def _call_analysis_lines(bundle: Optional[CallAnalysisBundle]) -> List[str]:
    if bundle is None:
        return []
    lines = []
    metadata = bundle.value(AnalysisKind.METADATA)
    summary = getattr(metadata, "summary", None)
    if summary:
        lines.append(f"Summary: {summary}")

    strategy = bundle.value(AnalysisKind.STRATEGY)
    gaps = getattr(strategy, "critical_gaps", None) or []
    if gaps:
        lines.append("Gaps: " + ", ".join(f"{g.category}: {g.description}" for g in gaps))

    psychology = bundle.value(AnalysisKind.PSYCHOLOGY)
    persona = getattr(psychology, "prospect_persona", None)
    if persona:
        disc = getattr(psychology, "disc_profile", None)
        lines.append(f"Persona: {persona}" + (f" ({disc})" if disc and disc != "Unknown" else ""))
    return lines


def build_insights_prompt(
    context: AccountContext,
    bundles: Sequence[CallAnalysisBundle],
    task: Optional[str] = None,
) -> str:
    """Render the bounded account context: header, stakeholders, newest calls, newest emails."""
    account = context.account
    stakeholders = context.stakeholders
    stakeholder_map: Dict[str, StakeholderRecord] = {s.id: s for s in stakeholders}
    bundle_map = {b.call.id: b for b in bundles}

    heat = f"{account.heat_score:g}" if account.heat_score else "Not rated"
    lines = [
        f"## ACCOUNT: {account.account_name or account.prospect_name or account.id}",
        f"Status: {account.status or 'unknown'}",
        f"Heat Score: {heat}/10",
        f"Potential Revenue: {format_money(account.potential_revenue)}",
        "",
        f"## STAKEHOLDERS ({len(stakeholders)})",
    ]
    lines.extend(_stakeholder_line(s) for s in stakeholders)

    lines.append("")
    lines.append(f"## CALL HISTORY ({len(context.calls)} calls)")
    for call in context.calls[: settings.max_context_calls]:
        lines.append("")
        lines.append(f"### {call.call_date.isoformat()} - {call.call_type or 'Call'}")
        lines.extend(_call_analysis_lines(bundle_map.get(call.id)))
        lines.append(f"Transcript: {excerpt(call.raw_text, settings.call_excerpt_chars)}")

    if context.emails:
        lines.append("")
        lines.append(f"## EMAIL COMMUNICATIONS ({len(context.emails)} emails)")
        for email in context.emails[: settings.max_context_emails]:
            direction = "SENT" if email.direction == "outgoing" else "RECEIVED"
            contact = email.contact_name or ""
            stakeholder = stakeholder_map.get(email.stakeholder_id) if email.stakeholder_id else None
            if stakeholder:
                contact = stakeholder.name + (f" ({stakeholder.job_title})" if stakeholder.job_title else "")
            lines.append("")
            lines.append(f"[{email.email_date.isoformat()}] {direction}" + (f" - {contact}" if contact else ""))
            if email.subject:
                lines.append(f"Subject: {email.subject}")
            lines.append(excerpt(email.body, settings.email_excerpt_chars))

    if context.degraded_sections:
        lines.append("")
        lines.append(f"NOTE: Some data could not be loaded ({', '.join(context.degraded_sections)}).")

    lines.append("")
    lines.append(task or INSIGHTS_TASK)
    return "\n".join(lines)


# ═══════════════════════════════════════════════════════════
#  Narrative parsing
# ═══════════════════════════════════════════════════════════

def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [collapse_whitespace(v) for v in value if isinstance(v, str) and v.strip()]


def _opt_str(value) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _build_narrative(raw: dict) -> NarrativeInsights:
    """Convert raw tool arguments into NarrativeInsights, dropping anything malformed."""
    dp_raw = raw.get("decision_process")
    decision_process = DecisionProcess()
    if isinstance(dp_raw, dict):
        decision_process = DecisionProcess(
            stakeholders=_str_list(dp_raw.get("stakeholders")),
            timeline=_opt_str(dp_raw.get("timeline")),
            budget_signals=_opt_str(dp_raw.get("budget_signals")),
        )

    industry = _opt_str(raw.get("industry"))
    if industry and industry not in INDUSTRIES:
        logger.warning(f"Ignoring industry outside the allowed list: {industry!r}")
        industry = None

    return NarrativeInsights(
        business_context=_opt_str(raw.get("business_context")) or "",
        pain_points=_str_list(raw.get("pain_points")),
        decision_process=decision_process,
        competitors_mentioned=_str_list(raw.get("competitors_mentioned")),
        communication_summary=_opt_str(raw.get("communication_summary")) or "",
        key_opportunities=_str_list(raw.get("key_opportunities")),
        relationship_health=_opt_str(raw.get("relationship_health")) or "",
        industry=industry,
    )


# ═══════════════════════════════════════════════════════════
#  Entry points
# ═══════════════════════════════════════════════════════════

async def synthesize_narrative(
    context: AccountContext,
    bundles: Sequence[CallAnalysisBundle],
    gateway,
) -> NarrativeInsights:
    prompt = build_insights_prompt(context, bundles)
    logger.info(f"Synthesizing insights for account {context.account.id} ({len(prompt)} chars of context)")
    raw = await gateway.invoke_tool(INSIGHTS_SYSTEM_PROMPT, prompt, INSIGHTS_TOOL)
    narrative = _build_narrative(raw)
    if not narrative.business_context:
        logger.warning(f"Synthesis for account {context.account.id} returned no business_context")
    return narrative


async def stream_account_brief(
    context: AccountContext,
    bundles: Sequence[CallAnalysisBundle],
    gateway,
) -> AsyncIterator[str]:
    """Stream a free-text pre-call brief built from the same bounded context."""
    prompt = build_insights_prompt(context, bundles, task=BRIEF_TASK)
    total = 0
    async for delta in gateway.stream_text(BRIEF_SYSTEM_PROMPT, prompt):
        total += len(delta)
        yield delta
    logger.info(f"Streamed brief for account {context.account.id}: {total} chars")
