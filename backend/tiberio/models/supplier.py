from sqlalchemy import Column, Integer, String, Text

from tiberio.db import Base


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    contact_person = Column(String(255), nullable=True)
    contact_number = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Supplier id={self.id} name={self.name}>"
