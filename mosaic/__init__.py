# Mosaic board engine: lists, cards, automation rules and derived views
#
# Components:
#   schema.py        - Data model (Card, BoardList, Checklist, Attachment, Notification, ...)
#   store.py         - In-memory board store (read snapshots, lookups, stats)
#   context.py       - Mutation context (user, automation or scheduled origin)
#   board.py         - Mutation API, the only writer of the board store
#   automation.py    - Automation vocabulary and rule engine
#   notifications.py - Watch subsystem and notification feed
#   visibility.py    - Filter evaluation and drag-and-drop placement
#   persistence.py   - SQLite document persistence with sanitization
#   config.py        - YAML configuration and logging setup
#   server.py        - Flask JSON API over the mutation API
