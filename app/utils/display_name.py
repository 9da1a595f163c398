from app.models.user import User


def get_display_name(user: User) -> str:
    """Name shown to the other party: worker full name, business name, else the email local part.

    Profiles must have been eager-loaded (lazy="raise").
    """
    worker = user.__dict__.get("worker_profile")
    if worker is not None and worker.full_name:
        return worker.full_name
    business = user.__dict__.get("business_profile")
    if business is not None and business.name:
        return business.name
    return user.email.split("@")[0]
