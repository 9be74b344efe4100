# /flowbot/config/strings.py

# This file contains all user-facing strings, making them easy to manage,
# update, and eventually localize without changing application logic.

# Greeting
GREETING_TEMPLATE = "{salutation}, {name}! \n\nWelcome! How can I help you today?"
GREETING_DEFAULT_NAME = "there"
SALUTATION_MORNING = "Good morning"
SALUTATION_AFTERNOON = "Good afternoon"
SALUTATION_EVENING = "Good evening"

# Help menu
HELP_MENU_BODY = "*Main Menu*\n\nPlease select an option:\n\nTap the button below to see all options."
HELP_MENU_FOOTER = "Available 24/7"
HELP_MENU_BUTTON = "View Options"

# Human handoff
HUMAN_HANDOFF_TEXT = """I'll connect you with our team right away!

A team member will respond shortly. Our typical response time is within 15 minutes during business hours (9 AM - 6 PM IST).

Feel free to share your query, and we'll get back to you as soon as possible."""
HUMAN_HANDOFF_REASON = "User requested human agent"

# Status
STATUS_INTEGRATED_BODY = "I can check your filing status. What would you like to know?\n\nSelect an option below:"
STATUS_STANDALONE_BODY = "To check your status, please contact our team.\n\nWould you like to speak with someone?"

# Thanks / bye
THANKS_RESPONSES = [
    "You're welcome! Is there anything else I can help you with?",
    "Happy to help! Let me know if you need anything else.",
    "My pleasure! Feel free to reach out anytime.",
]
BYE_TEMPLATE = "Goodbye, {name}! Have a great day!\n\nFeel free to message us anytime if you need assistance."

# Fallback
FALLBACK_BODY = "I'm not sure I understood that.\n\nCould you try rephrasing, or select from these options:"
FALLBACK_ESCALATION_BODY = """I'm having trouble understanding your request.

Would you like to:
- See our menu options
- Connect with our team"""

# Engine
ENGINE_ERROR_TEXT = "I'm sorry, I encountered an error. Please try again or type 'help' for options."
FLOW_ERROR_BODY = "I'm sorry, something went wrong. How can I help you?"
ASSIGN_AGENT_DEFAULT_TEXT = "I'm connecting you with our team. Please wait a moment."
ASSIGN_AGENT_DEFAULT_REASON = "Flow assigned to agent"
LIST_DEFAULT_BUTTON = "Select"

# Button titles
BUTTON_MAIN_MENU = "Main Menu"
BUTTON_SHOW_MENU = "Show Menu"
BUTTON_CHECK_STATUS = "Check Status"
BUTTON_TALK_TO_AGENT = "Talk to Agent"
BUTTON_CONNECT_ME = "Yes, Connect Me"
BUTTON_BACK_TO_MENU = "Back to Menu"
