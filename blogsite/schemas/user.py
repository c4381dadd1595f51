# blogsite/schemas/user.py
from pydantic import BaseModel, ConfigDict


class UserSummary(BaseModel):
    id: int
    username: str


class UserPublic(UserSummary):
    # Pydantic v2：允許從 ORM 物件轉模型
    model_config = ConfigDict(from_attributes=True)

    role: str
