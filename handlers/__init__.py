"""
handlers/ - Presentation Layer
================================
Telegram bot handlers. Each handler receives updates from Telegram,
delegates to the appropriate Service, and sends the response back to the user.
Shared objects (repositories, services) are taken from `context.bot_data`,
where `main` puts them at startup. No business logic lives here.
"""
