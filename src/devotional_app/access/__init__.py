#!filepath: src/devotional_app/access/__init__.py
from devotional_app.access.admin import AccountsRepo, AdminRepo
from devotional_app.access.policy import Caller, is_admin
from devotional_app.access.user_data import UserData, UserDataRepo

__all__ = [
    "AccountsRepo",
    "AdminRepo",
    "Caller",
    "UserData",
    "UserDataRepo",
    "is_admin",
]
