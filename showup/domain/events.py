"""Closed set of onboarding analytics event types."""
from enum import Enum


class AnalyticsEventType(str, Enum):
    SESSION_STARTED = "session_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_RETURNED = "step_returned"
    AI_MESSAGE_SENT = "ai_message_sent"
    AI_MESSAGE_RECEIVED = "ai_message_received"
    CHALLENGE_SELECTED = "challenge_selected"
    DEPOSIT_AMOUNT_CHANGED = "deposit_amount_changed"
    GUARANTOR_ADDED = "guarantor_added"
    GUARANTOR_REMOVED = "guarantor_removed"
    TERMS_ACCEPTED = "terms_accepted"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABANDONED = "session_abandoned"
