import json
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.models import Lead
from assistant.models.enums import LeadStatus
from assistant.schemas.confirmation import Candidate, ClassifierVerdict, PendingConfirmation
from assistant.schemas.intents import LeadFields, LeadUpdate, ProgressDetection, ProgressReport
from assistant.services import sales_metrics
from assistant.services.ai_executor import optional_complete_json
from assistant.services.clock import ensure_timezone, from_local, local_time, to_utc
from assistant.services.confirmation_flow import ConfirmationFlow, new_pending
from assistant.services.conversation_history import format_time_ago
from assistant.services.duplicate_classifier import unique_fallback
from assistant.services.entity_matcher import clean_name, find_existing_lead
from assistant.services.error_messages import log_and_format
from assistant.services.errors import EntityNotFoundError, InvalidIntentError
from assistant.services.notes import merge_notes
from assistant.services.prompts import (
    progress_detection_prompt,
    progress_report_prompt,
    sales_intent_prompt,
)
from assistant.services.results import (
    ConversationReply,
    DuplicatePrompt,
    LeadCreated,
    LeadDeleted,
    LeadsQueried,
    LeadUpdated,
    LeadViewed,
    ProgressReportResult,
    SalesResult,
    SalesSummary,
)

logger = get_logger("sales_service")

PROGRESS_CONFIDENCE_THRESHOLD = 0.95
QUERY_LIMIT = 10
CONTEXT_LEAD_LIMIT = 20

STATUS_EMOJIS = {
    LeadStatus.NEW.value: "✨",
    LeadStatus.CONTACTED.value: "📞",
    LeadStatus.REPLIED.value: "💬",
    LeadStatus.INTERESTED.value: "🎯",
    LeadStatus.WAITING.value: "⏳",
    LeadStatus.PROPOSAL_SENT.value: "📄",
    LeadStatus.CLOSED_WON.value: "🎉",
    LeadStatus.CLOSED_LOST.value: "❌",
}

QUERY_HEADERS = {
    "today": "📅 **Today's Follow-ups ({count}):**",
    "overdue": "⚠️ **Overdue Follow-ups ({count}):**",
    "new": "✨ **New Leads ({count}):**",
    "interested": "🎯 **Interested Prospects ({count}):**",
    "all": "📋 **Your Pipeline ({count} leads):**",
}

QUERY_EMPTY = {
    "today": "📅 No follow-ups scheduled for today. Great job staying on top of things!",
    "overdue": "✅ No overdue follow-ups. You're caught up!",
    "new": "📋 No new leads found.",
    "interested": "🎯 No interested leads found.",
    "all": "📋 No leads found. Ready to add your first prospect?",
}


def normalize_status(value: Optional[str]) -> Optional[str]:
    """Map a status from the AI onto a known LeadStatus value, or None."""
    if not value:
        return None
    wanted = value.strip().lower()
    for status in LeadStatus:
        if status.value.lower() == wanted:
            return status.value
    return None


def query_type_for(message: str) -> str:
    text = (message or "").lower()
    for query_type in ("today", "overdue", "new", "interested"):
        if query_type in text:
            return query_type
    return "all"


def status_emoji(status: Optional[str]) -> str:
    return STATUS_EMOJIS.get(status or "", "📋")


def followup_text(followup: Optional[datetime], now: datetime, tz_name: str) -> str:
    if followup is None:
        return ""
    local = local_time(followup, tz_name)
    today = local_time(now, tz_name).date()
    if local.date() == today:
        return f"📅 Today {local.strftime('%H:%M')}"
    if local.date() == today + timedelta(days=1):
        return f"📅 Tomorrow {local.strftime('%H:%M')}"
    if ensure_timezone(followup) < to_utc(now):
        return f"⚠️ Overdue ({local.strftime('%b %d')})"
    return f"📅 {local.strftime('%b %d, %H:%M')}"


def format_duplicate_prompt(verdict: ClassifierVerdict, proposed: dict) -> str:
    lines = ["🤔 **Potential Duplicate Detected!**", ""]
    if verdict.matched_label:
        lines.append(f"I found a similar lead: **{verdict.matched_label}**")
    lines.append(f"📊 Confidence: {verdict.confidence_percent}%")
    lines.append(f"💭 Reasoning: {verdict.rationale}")
    lines += ["", "**What you wanted to add:**", f"✨ **{proposed.get('name')}**"]
    if proposed.get("phone"):
        lines.append(f"📞 {proposed['phone']}")
    if proposed.get("status"):
        lines.append(f"📊 {proposed['status']}")
    lines += [
        "",
        "**What would you like to do?**",
        '• Reply **"yes"** - Create as new lead anyway',
        '• Reply **"update"** - Update the existing lead instead',
        '• Reply **"show"** - Show me more details about the existing lead',
        '• Reply **"cancel"** - Cancel this action',
    ]
    return "\n".join(lines)


def format_lead_details(lead: Lead, now: datetime, tz_name: str) -> str:
    response = f"👤 **{lead.name}** {status_emoji(lead.status)}\n\n"
    response += f"📊 **Status:** {lead.status}\n"
    if lead.phone:
        response += f"📞 **Phone:** {lead.phone}\n"

    flags = []
    if lead.contacted:
        flags.append("📞 Contacted")
    if lead.replied:
        flags.append("💬 Replied")
    if lead.interested:
        flags.append("🎯 Interested")
    if flags:
        response += f"📈 **Activity:** {', '.join(flags)}\n"

    if lead.next_followup:
        response += f"📅 **Next Follow-up:** {followup_text(lead.next_followup, now, tz_name)}\n"
    if lead.next_step:
        response += f"🎯 **Next Step:** {lead.next_step}\n"
    if lead.notes:
        response += f"📝 **Notes:** {lead.notes}\n"

    now_ms = int(to_utc(now).timestamp() * 1000)
    created_ms = int(ensure_timezone(lead.created_at).timestamp() * 1000)
    updated_ms = int(ensure_timezone(lead.updated_at).timestamp() * 1000)
    response += "\n⏰ **Timeline:**\n"
    response += f"• Created: {format_time_ago(created_ms, now_ms)}\n"
    response += f"• Last updated: {format_time_ago(updated_ms, now_ms)}"
    return response


def format_sales_extras(response: str, update: LeadUpdate) -> str:
    if update.sales_wisdom:
        response += f"\n\n💼 **Sales Wisdom:** {update.sales_wisdom}"
    if update.suggestions:
        response += "\n\n💡 **AI Suggestions:**\n"
        for i, suggestion in enumerate(update.suggestions, start=1):
            response += f"{i}. {suggestion.suggestion}\n"
            if suggestion.reason:
                response += f"   *{suggestion.reason}*\n"
    if update.smart_advice:
        response += "\n\n🎯 **Smart Advice:**\n"
        for tip in update.smart_advice:
            response += f"• {tip}\n"
    return response


def format_progress_report(report: ProgressReport, data: dict) -> str:
    overview = data["overview"]
    conversion = data["conversion_metrics"]
    activity = data["activity_metrics"]

    response = "📊 **Sales Progress Report**\n\n"
    response += "📈 **Pipeline Overview:**\n"
    response += f"• Total leads: {overview['total_leads']}\n"
    response += f"• This month: {overview['leads_this_month']}\n"
    response += f"• Growth rate: {overview['growth_rate']}%\n\n"

    response += "🎯 **Conversion Rates:**\n"
    response += f"• Contact rate: {conversion['contacted_rate']}%\n"
    response += f"• Reply rate: {conversion['reply_rate']}%\n"
    response += f"• Interest rate: {conversion['interest_rate']}%\n"
    response += f"• Win rate: {conversion['win_rate']}%\n\n"

    response += f"⚡ **Activity Score:** {activity['activity_score']}\n"
    response += f"• Updates this week: {activity['updates_this_week']}\n"
    response += f"• Scheduled follow-ups: {activity['followups_scheduled']}\n"
    if activity["overdue_followups"] > 0:
        response += f"• ⚠️ Overdue follow-ups: {activity['overdue_followups']}\n"
    response += f"\n💰 **Estimated Pipeline Value:** R{data['pipeline_value']['estimated_value']:,}\n\n"

    response += format_report_sections(report)
    return response.rstrip() + "\n"


def format_report_sections(report: ProgressReport) -> str:
    response = ""
    if report.insights:
        response += "🧠 **Key Insights:**\n" + "".join(f"• {insight}\n" for insight in report.insights) + "\n"
    if report.recommendations:
        response += "💡 **Recommendations:**\n"
        for i, rec in enumerate(report.recommendations, start=1):
            priority = {"high": "🔴", "medium": "🟡"}.get(rec.priority, "🟢")
            response += f"{i}. {priority} {rec.action}\n"
            if rec.reason:
                response += f"   *{rec.reason}*\n"
        response += "\n"
    if report.trends.positive:
        response += "✅ **What's Working:**\n" + "".join(f"• {trend}\n" for trend in report.trends.positive) + "\n"
    if report.trends.concerning:
        response += "⚠️ **Areas for Improvement:**\n" + "".join(
            f"• {trend}\n" for trend in report.trends.concerning
        ) + "\n"
    return response


def format_sales_result(result: SalesResult, update: LeadUpdate, now: datetime, tz_name: str) -> str:
    """Render a sales action outcome. Every variant has a branch."""
    if isinstance(result, DuplicatePrompt):
        return result.message

    if isinstance(result, LeadCreated):
        lead = result.lead
        verb = "Updated existing" if result.was_existing else "Created"
        response = f"✅ **{verb} lead for {lead.name}**"
        if lead.phone:
            response += f"\n📞 Phone: {lead.phone}"
        if lead.status != LeadStatus.NEW.value:
            response += f"\n📊 Status: {lead.status}"
        if lead.next_followup:
            response += f"\n📅 Follow-up: {followup_text(lead.next_followup, now, tz_name)}"
        if result.verdict is not None and not result.verdict.is_duplicate:
            response += f"\n\n🧠 **AI confirmed unique lead** ({result.verdict.confidence_percent}% confidence)"
        return format_sales_extras(response, update)

    if isinstance(result, LeadUpdated):
        lead = result.lead
        if result.was_existing:
            response = f"✅ **Updated lead for {lead.name}**"
        else:
            response = f"✅ **Created new lead for {lead.name}** (didn't find existing, so I made a new one!)"
        if lead.phone:
            response += f"\n📞 Phone: {lead.phone}"
        if lead.status:
            response += f"\n📊 Status: {lead.status}"
        if lead.next_followup:
            response += f"\n📅 Next Follow-up: {followup_text(lead.next_followup, now, tz_name)}"
        if not result.was_existing:
            response += (
                "\n\n💡 *I couldn't find an existing lead with this name, "
                "so I created a fresh one with all your details!*"
            )
        return format_sales_extras(response, update)

    if isinstance(result, LeadViewed):
        return format_lead_details(result.lead, now, tz_name)

    if isinstance(result, LeadsQueried):
        if not result.leads:
            return QUERY_EMPTY.get(result.query_type, QUERY_EMPTY["all"])
        header = QUERY_HEADERS.get(result.query_type, QUERY_HEADERS["all"]).format(count=len(result.leads))
        lines = [header, ""]
        for i, lead in enumerate(result.leads, start=1):
            line = f"{i}. {status_emoji(lead.status)} **{lead.name}**\n   📊 {lead.status}"
            if lead.next_followup:
                line += f" | {followup_text(lead.next_followup, now, tz_name)}"
            lines.append(line + "\n")
        return "\n".join(lines).rstrip()

    if isinstance(result, LeadDeleted):
        return f"🗑️ **Deleted lead for {result.name}**"

    if isinstance(result, SalesSummary):
        response = "📊 **Sales Pipeline Summary**\n\n"
        response += f"📈 **Total Leads:** {result.total}\n"
        response += f"📅 **Today's Follow-ups:** {result.today_followups}\n"
        if result.overdue_followups > 0:
            response += f"⚠️ **Overdue Follow-ups:** {result.overdue_followups}\n"
        if result.by_status:
            response += "\n📋 **By Status:**\n"
            for status, count in result.by_status.items():
                response += f"{status_emoji(status)} {status}: {count}\n"
        if result.recent:
            response += "\n🕒 **Recently Updated:** " + ", ".join(lead.name for lead in result.recent)
        return response.rstrip()

    if isinstance(result, ProgressReportResult):
        return format_progress_report(result.report, result.metrics)

    if isinstance(result, ConversationReply):
        response = result.response
        data = result.user_data
        if data.get("total_leads") == 0:
            response += "\n\n💡 *Ready to start building your pipeline? Try adding your first prospect!*"
        elif data.get("overdue_followups", 0) > 0:
            response += f"\n\n⏰ *You have {data['overdue_followups']} overdue follow-ups that need attention.*"
        elif data.get("today_followups", 0) > 0:
            response += (
                f"\n\n📅 *You have {data['today_followups']} follow-ups scheduled for today "
                "- great job staying organized!*"
            )
        elif data.get("total_leads", 0) > 10:
            response += f"\n\n🚀 *Your pipeline is growing nicely with {data['total_leads']} leads!*"
        return format_sales_extras(response, update)

    raise TypeError(f"Unhandled sales result: {type(result).__name__}")


class SalesService:
    """Lead CRM driven by natural-language messages.

    Also the confirmation handler for the sales domain: pending duplicate
    questions are resolved through ``create_from_pending``,
    ``merge_into_candidate`` and ``describe_candidate``.
    """

    domain = "sales"
    entity_noun = "lead"
    show_hint = "💭 *Reply with 'update' to merge with this lead, or 'yes' to create separately*"

    def __init__(self, ctx):
        self.ctx = ctx
        self.executor = ctx.executor
        self.classifier = ctx.classifier
        self.tz_name = ctx.settings.timezone
        self.confirmations = ConfirmationFlow(ctx.confirmations, self, self.domain)

    def process_message(self, db: Session, user_id, message: str, conversation_history: Optional[str] = None) -> str:
        """Handle one sales message end to end. Never raises."""
        try:
            reply = self.confirmations.handle(db, user_id, message)
            if reply is not None:
                return reply

            now = self.ctx.now()
            prompt = sales_intent_prompt(self.user_context(db, user_id, now), conversation_history, now, self.tz_name)
            update = self.executor.complete_json(prompt, message, LeadUpdate, label="sales", user_id=user_id)
            result = self.dispatch(db, user_id, update, message)
            return format_sales_result(result, update, now, self.tz_name)
        except (EntityNotFoundError, InvalidIntentError) as exc:
            db.rollback()
            logger.info(f"Sales request rejected: {exc}", extra={"context": {"user_id": redact_id(user_id)}})
            return f"❌ {exc}"
        except Exception as exc:
            db.rollback()
            return log_and_format(exc, "Sales", user_id)

    def dispatch(self, db: Session, user_id, update: LeadUpdate, message: str) -> SalesResult:
        fields = update.updates
        if update.phone and not fields.phone:
            fields = fields.model_copy(update={"phone": update.phone})

        if update.action in ("create", "update", "view", "delete") and not clean_name(update.contact_name):
            raise InvalidIntentError("I need the lead's name to do that. Who are we talking about?")

        if update.action == "create":
            return self.create_lead(db, user_id, update.contact_name, fields)
        if update.action == "update":
            return self.update_lead(db, user_id, update.contact_name, fields)
        if update.action == "view":
            return LeadViewed(self._require_lead(db, user_id, update.contact_name))
        if update.action == "query":
            return self.query_leads(db, user_id, message)
        if update.action == "delete":
            return self.delete_lead(db, user_id, update.contact_name)
        if update.action == "summary":
            return self.summary(db, user_id)
        return self.conversation(db, user_id, update, message)

    def create_lead(self, db: Session, user_id, name: str, fields: LeadFields) -> SalesResult:
        name = clean_name(name)
        existing = find_existing_lead(db, user_id, name, fields.phone)
        if existing is not None:
            self._apply_fields(existing, fields)
            db.commit()
            logger.info(
                "Lead matched existing record, merged",
                extra={"context": {"user_id": redact_id(user_id), "lead_id": redact_id(existing.id)}},
            )
            return LeadCreated(existing, was_existing=True)

        verdict = self.classifier.check_lead(db, user_id, name, fields.phone)
        if verdict.is_duplicate:
            proposed = {"name": name, **fields.model_dump(mode="json", exclude_none=True)}
            candidates = self.classifier.lead_candidates(db, user_id, verdict)
            if self.confirmations.begin(user_id, new_pending("duplicate_lead", proposed, verdict, candidates)):
                return DuplicatePrompt(format_duplicate_prompt(verdict, proposed))
            logger.warning(
                "Could not park duplicate lead question, saving as unique",
                extra={"context": {"user_id": redact_id(user_id)}},
            )
            verdict = unique_fallback()

        lead = self._insert_lead(db, user_id, name, fields)
        return LeadCreated(lead, verdict=verdict)

    def update_lead(self, db: Session, user_id, name: str, fields: LeadFields) -> SalesResult:
        lead = find_existing_lead(db, user_id, name, fields.phone)
        if lead is None:
            logger.info(
                "Lead not found for update, creating instead",
                extra={"context": {"user_id": redact_id(user_id)}},
            )
            result = self.create_lead(db, user_id, name, fields)
            if isinstance(result, LeadCreated):
                return LeadUpdated(result.lead, was_existing=result.was_existing)
            return result

        self._apply_fields(lead, fields)
        db.commit()
        return LeadUpdated(lead)

    def query_leads(self, db: Session, user_id, message: str) -> LeadsQueried:
        query_type = query_type_for(message)
        query = db.query(Lead).filter(Lead.user_id == user_id)
        start, end = sales_metrics.day_bounds(self.ctx.now(), self.tz_name)
        if query_type == "today":
            query = query.filter(Lead.next_followup >= start, Lead.next_followup < end)
        elif query_type == "overdue":
            query = query.filter(Lead.next_followup < start)
        elif query_type == "new":
            query = query.filter(Lead.status == LeadStatus.NEW.value)
        elif query_type == "interested":
            query = query.filter(Lead.interested.is_(True))

        leads = (
            query.order_by(Lead.next_followup.is_(None), Lead.next_followup.asc(), Lead.updated_at.desc())
            .limit(QUERY_LIMIT)
            .all()
        )
        return LeadsQueried(leads, query_type)

    def delete_lead(self, db: Session, user_id, name: str) -> LeadDeleted:
        lead = self._require_lead(db, user_id, name)
        deleted_name = lead.name
        db.delete(lead)
        db.commit()
        return LeadDeleted(deleted_name)

    def summary(self, db: Session, user_id) -> SalesSummary:
        today, overdue = sales_metrics.followup_counts(db, user_id, self.ctx.now(), self.tz_name)
        by_status = sales_metrics.status_breakdown(db, user_id)
        recent = (
            db.query(Lead).filter(Lead.user_id == user_id).order_by(Lead.updated_at.desc()).limit(3).all()
        )
        return SalesSummary(
            total=sum(by_status.values()),
            by_status=by_status,
            today_followups=today,
            overdue_followups=overdue,
            recent=recent,
        )

    def conversation(self, db: Session, user_id, update: LeadUpdate, message: str) -> SalesResult:
        detection = optional_complete_json(
            self.executor,
            progress_detection_prompt("sales", message),
            "",
            ProgressDetection,
            label="sales_progress_detection",
            user_id=user_id,
        )
        if (
            detection is not None
            and detection.is_progress_request
            and detection.confidence > PROGRESS_CONFIDENCE_THRESHOLD
        ):
            return self.progress_report(db, user_id)

        summary = self.summary(db, user_id)
        return ConversationReply(
            response=update.contextual_opening or "I'm here to help with your sales!",
            user_data={
                "total_leads": summary.total,
                "today_followups": summary.today_followups,
                "overdue_followups": summary.overdue_followups,
            },
        )

    def progress_report(self, db: Session, user_id) -> ProgressReportResult:
        data = sales_metrics.gather_progress_data(db, user_id, self.ctx.now())
        report = optional_complete_json(
            self.executor,
            progress_report_prompt("sales"),
            json.dumps(data, default=str),
            ProgressReport,
            label="sales_progress_report",
            user_id=user_id,
        )
        return ProgressReportResult(report or sales_metrics.basic_progress_report(data), data)

    def user_context(self, db: Session, user_id, now: datetime) -> str:
        today, overdue = sales_metrics.followup_counts(db, user_id, now, self.tz_name)
        by_status = sales_metrics.status_breakdown(db, user_id)
        lines = [
            "",
            "USER SALES CONTEXT:",
            f"TOTAL LEADS: {sum(by_status.values())}",
            f"TODAY'S FOLLOW-UPS: {today}",
            f"OVERDUE FOLLOW-UPS: {overdue}",
        ]
        if by_status:
            lines.append("LEADS BY STATUS:")
            lines += [f"- {status}: {count}" for status, count in by_status.items()]

        leads = (
            db.query(Lead)
            .filter(Lead.user_id == user_id)
            .order_by(Lead.updated_at.desc())
            .limit(CONTEXT_LEAD_LIMIT)
            .all()
        )
        if leads:
            lines.append("EXISTING LEADS:")
            lines += [f"- {lead.name}{f' ({lead.phone})' if lead.phone else ''} - {lead.status}" for lead in leads]
        return "\n".join(lines)

    # Confirmation handler

    def create_from_pending(self, db: Session, user_id, pending: PendingConfirmation) -> str:
        fields = LeadFields.model_validate(pending.proposed_entity)
        lead = self._insert_lead(db, user_id, pending.proposed_entity.get("name", ""), fields)
        return f"✅ **Created new lead for {lead.name}**\n\n💡 *You chose to keep this separate from the similar lead*"

    def merge_into_candidate(self, db: Session, user_id, pending: PendingConfirmation, candidate: Candidate) -> str:
        lead = self._lead_by_id(db, user_id, candidate.id)
        self._apply_fields(lead, LeadFields.model_validate(pending.proposed_entity))
        db.commit()
        return f"✅ **Updated existing lead for {lead.name}**\n\n💡 *Combined with previous lead as you requested*"

    def describe_candidate(self, db: Session, user_id, candidate: Candidate) -> str:
        return format_lead_details(self._lead_by_id(db, user_id, candidate.id), self.ctx.now(), self.tz_name)

    # Persistence helpers

    def _insert_lead(self, db: Session, user_id, name: str, fields: LeadFields) -> Lead:
        name = clean_name(name)
        if not name:
            raise InvalidIntentError("I need the lead's name to create it.")
        lead = Lead(
            user_id=user_id,
            name=name,
            phone=fields.phone,
            contacted=bool(fields.contacted),
            replied=bool(fields.replied),
            interested=bool(fields.interested),
            status=normalize_status(fields.status) or LeadStatus.NEW.value,
            next_step=fields.next_step,
            next_followup=from_local(fields.next_followup, self.tz_name) if fields.next_followup else None,
            notes=(fields.notes or "").strip() or None,
        )
        db.add(lead)
        db.commit()
        logger.info(
            "Lead created",
            extra={"context": {"user_id": redact_id(user_id), "lead_id": redact_id(lead.id)}},
        )
        return lead

    def _apply_fields(self, lead: Lead, fields: LeadFields) -> None:
        if fields.phone:
            lead.phone = fields.phone
        if fields.contacted is not None:
            lead.contacted = fields.contacted
        if fields.replied is not None:
            lead.replied = fields.replied
        if fields.interested is not None:
            lead.interested = fields.interested
        status = normalize_status(fields.status)
        if status:
            lead.status = status
        if fields.next_step:
            lead.next_step = fields.next_step
        if fields.next_followup:
            lead.next_followup = from_local(fields.next_followup, self.tz_name)
        merged = merge_notes(lead.notes, fields.notes, self.ctx.now(), self.tz_name)
        if merged != lead.notes:
            lead.notes = merged

    def _require_lead(self, db: Session, user_id, name: Optional[str]) -> Lead:
        lead = find_existing_lead(db, user_id, name)
        if lead is None:
            raise EntityNotFoundError(f'Lead "{clean_name(name)}" not found')
        return lead

    def _lead_by_id(self, db: Session, user_id, lead_id: str) -> Lead:
        try:
            key = uuid.UUID(str(lead_id))
        except ValueError as exc:
            raise EntityNotFoundError("Lead no longer exists") from exc
        lead = db.query(Lead).filter(Lead.user_id == user_id, Lead.id == key).first()
        if lead is None:
            raise EntityNotFoundError("Lead no longer exists")
        return lead
