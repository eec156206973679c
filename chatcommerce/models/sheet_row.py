from sqlalchemy import JSON, Column, Integer, String, UniqueConstraint

from chatcommerce.database import Base


class SheetRow(Base):
    __tablename__ = "sheet_rows"
    __table_args__ = (UniqueConstraint("book_id", "table_name", "row_number", name="uq_sheet_row_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(String(120), nullable=False, index=True)
    table_name = Column(String(120), nullable=False)
    row_number = Column(Integer, nullable=False)  # 1 is the header row, data starts at 2
    values = Column(JSON, nullable=False, default=list)
