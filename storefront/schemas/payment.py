from pydantic import BaseModel


class CardInput(BaseModel):
    """Raw card fields as typed by the shopper.

    Format and length checks live in the payment service so that a rejected
    card is recorded against the order under the code of the failing field.
    """

    card_number: str = ""
    expiry: str = ""
    cvv: str = ""
    cardholder_name: str = ""
