from chatcommerce.models.sheet_row import SheetRow

__all__ = ["SheetRow"]
