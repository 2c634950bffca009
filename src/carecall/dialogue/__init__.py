"""
Conversation state machine, session storage and completion glue.
"""
