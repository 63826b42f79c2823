from pydantic import BaseModel


class MeOut(BaseModel):
    api_key_id: str
    subject: str
    role: str
    user_id: int | None
