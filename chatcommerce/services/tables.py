"""Table names and column letters of the per-tenant book and the master book."""

TENANTS = "Tenants"
# A id, B name, C channel type, D phone id, E token, F book id, G routing path,
# H flow type, I capabilities, J order prefix, K lifecycle, L config json

USER_TENANTS = "UserTenants"
# A user, B tenant id, C registered at, D last interaction

ADVISOR_CONVERSATIONS = "AdvisorConversations"
# A id, B created at, C customer name, D user, E state, F last activity,
# G handoff counter, H last close, I tenant id
ADVISOR_STATE_COL = "E"
ADVISOR_ACTIVITY_COL = "F"
ADVISOR_COUNTER_COL = "G"
ADVISOR_CLOSED_COL = "H"

MESSAGES = "Messages"
# A id, B conversation id, C timestamp, D kind, E body, F user

CUSTOMERS = "Customers"
# A id, B user, C name, D phone, E address, F registered at, G last purchase,
# H region, I city

ORDERS = "Orders"
# A id, B date, C customer id, D user, E customer name, F phone, G address,
# H lines json, I total, J status, K voucher url, L notes, M region, N city
ORDER_STATUS_COL = "J"
ORDER_VOUCHER_COL = "K"

INVENTORY = "Inventory"
# A code, B name, C description, D price, E stock, F reserved, G image url,
# H status, I category
INVENTORY_RESERVED_COL = "F"

SETTINGS = "Settings"
# A key, B value
