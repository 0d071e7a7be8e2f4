"""Caller identity carried by a verified credential."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from pitrace.fsm.states import LoginType
from pitrace.schemas.payment import Owner


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    display_name: str
    wallet_address: Optional[str] = None
    login_type: LoginType = LoginType.GUEST

    def as_owner(self) -> Owner:
        return Owner(
            uid=self.uid,
            display_name=self.display_name,
            wallet_address=self.wallet_address,
        )
