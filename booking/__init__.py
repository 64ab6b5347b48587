"""
Appointment booking backend.

Layout:
- config.py   : environment configuration (.env)
- db.py       : SQLAlchemy engine and sessions
- models.py   : ORM models (users, files, appointments, notifications)
- timeutil.py : hour truncation and date formatting
- schemas.py  : request/response models and booking body validation
- errors.py   : business rule errors and their HTTP status
- services.py : booking rules (list, book, cancel, notifications)
- mail.py     : outgoing email (SMTP or log)
- auth_*.py   : password hashing, JWT, user registration and login
- api_main.py : FastAPI application
- seed.py     : demo data
- cli.py      : command line front-end over the same service
"""
