"""
Pantry CRM Opportunity Schemas
Stage and context codes with their display tables, free of the database layer
"""

from enum import Enum

# Generated names are stored in opportunities.name
OPPORTUNITY_NAME_MAX_LENGTH = 500


class OpportunityStage(str, Enum):
    """Seven-stage sales pipeline, in pipeline order"""
    NEW_LEAD = "new_lead"
    INITIAL_OUTREACH = "initial_outreach"
    SAMPLE_VISIT_OFFERED = "sample_visit_offered"
    AWAITING_RESPONSE = "awaiting_response"
    FEEDBACK_LOGGED = "feedback_logged"
    DEMO_SCHEDULED = "demo_scheduled"
    CLOSED_WON = "closed_won"


class OpportunityContext(str, Enum):
    """Business reason an opportunity was opened"""
    NEW_BUSINESS = "NEW_BUSINESS"
    EXPANSION = "EXPANSION"
    RENEWAL = "RENEWAL"
    SITE_VISIT = "SITE_VISIT"
    FOOD_SHOW = "FOOD_SHOW"
    NEW_PRODUCT_INTEREST = "NEW_PRODUCT_INTEREST"
    FOLLOW_UP = "FOLLOW_UP"
    DEMO_REQUEST = "DEMO_REQUEST"
    SAMPLING = "SAMPLING"
    CUSTOM = "CUSTOM"


STAGE_LABELS = {
    OpportunityStage.NEW_LEAD: "New Lead",
    OpportunityStage.INITIAL_OUTREACH: "Initial Outreach",
    OpportunityStage.SAMPLE_VISIT_OFFERED: "Sample/Visit Offered",
    OpportunityStage.AWAITING_RESPONSE: "Awaiting Response",
    OpportunityStage.FEEDBACK_LOGGED: "Feedback Logged",
    OpportunityStage.DEMO_SCHEDULED: "Demo Scheduled",
    OpportunityStage.CLOSED_WON: "Closed - Won",
}

STAGE_DEFAULT_PROBABILITY = {
    OpportunityStage.NEW_LEAD: 10,
    OpportunityStage.INITIAL_OUTREACH: 20,
    OpportunityStage.SAMPLE_VISIT_OFFERED: 35,
    OpportunityStage.AWAITING_RESPONSE: 40,
    OpportunityStage.FEEDBACK_LOGGED: 60,
    OpportunityStage.DEMO_SCHEDULED: 80,
    OpportunityStage.CLOSED_WON: 100,
}

# CUSTOM has no fixed label; the caller supplies one
CONTEXT_LABELS = {
    OpportunityContext.NEW_BUSINESS: "New Business",
    OpportunityContext.EXPANSION: "Expansion",
    OpportunityContext.RENEWAL: "Renewal",
    OpportunityContext.SITE_VISIT: "Site Visit",
    OpportunityContext.FOOD_SHOW: "Food Show",
    OpportunityContext.NEW_PRODUCT_INTEREST: "New Product Interest",
    OpportunityContext.FOLLOW_UP: "Follow-up",
    OpportunityContext.DEMO_REQUEST: "Demo Request",
    OpportunityContext.SAMPLING: "Sampling",
}
