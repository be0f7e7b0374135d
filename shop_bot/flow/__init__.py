"""
Order Flow for Shop Bot.

The conversational state machine that captures an order:

- steps: the closed step set and the registry of transitions
- vocabulary: keyword classification of button labels and typed answers
- validators / step_validator: per-step input validation
- draft: the in-progress order and its typed control metadata
- message_builder: outbound assistant messages
- handlers: per-step-family handlers (guided, express, payment, post-purchase)
- orchestrator: the single entry point for an inbound message
"""
