from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PARTY_CUSTOMER = "CUSTOMER"
PARTY_SUPPLIER = "SUPPLIER"
PARTY_TYPES = (PARTY_CUSTOMER, PARTY_SUPPLIER)


class Party(db.Model):
    """
    Customer or supplier account. Both are structurally identical for the ledger.

    BALANCE FIELDS:
    - opening_balance_cents: debt owed at onboarding. Fixed at creation; what
      remains of it is computed from OPENING_BALANCE payments, never stored.
    - credit_balance_cents: funds owed TO the party (overpayment surplus,
      credit notes). Only party_service / allocation / reversal touch it.

    Credit limits apply to customers only and are a soft warning.
    """
    __tablename__ = "parties"
    __table_args__ = (
        db.Index("ix_parties_type_name", "party_type", "name"),
        db.CheckConstraint("credit_balance_cents >= 0", name="credit_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_type = db.Column(db.String(16), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    opening_balance_date = db.Column(db.DateTime(timezone=True), nullable=True)
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_credit_limited = db.Column(db.Boolean, nullable=False, default=False)
    credit_limit_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_customer(self) -> bool:
        return self.party_type == PARTY_CUSTOMER

    @property
    def opening_balance_key(self) -> str:
        return f"OPENING_BALANCE_{self.id}"

    @property
    def credit_balance_key(self) -> str:
        return f"CREDIT_BALANCE_{self.id}"

    def __repr__(self) -> str:
        return f"<Party id={self.id} type={self.party_type} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_type": self.party_type,
            "name": self.name,
            "business_name": self.business_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "opening_balance_cents": self.opening_balance_cents,
            "opening_balance_date": to_utc_z(self.opening_balance_date),
            "credit_balance_cents": self.credit_balance_cents,
            "is_credit_limited": self.is_credit_limited,
            "credit_limit_cents": self.credit_limit_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
