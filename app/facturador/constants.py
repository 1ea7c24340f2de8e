"""Permission catalog, seeded roles and feature-mode messages."""

# Facturación / caja
PERM_CASH_OPEN = "cash.register.open"
PERM_CASH_CLOSE = "cash.register.close"
PERM_INVOICE_ISSUE = "invoice.issue"
PERM_CASH_REPORT = "cash.report.view"
PERM_ADMIN_USERS = "admin.users.manage"
PERM_INVENTORY_MANAGE = "inventory.manage"

# CxC
PERM_CXC_MENU = "menu.cxc.view"
PERM_CUSTOMERS_MANAGE = "customers.manage"
PERM_PAYMENT_TERMS_MANAGE = "payment-terms.manage"
PERM_DOCUMENTS_MANAGE = "customer.documents.manage"
PERM_DOCUMENTS_APPLY = "customer.documents.apply"
PERM_CREDIT_MANAGE = "customer.credit.manage"
PERM_COLLECTIONS_MANAGE = "customer.collections.manage"
PERM_DISPUTES_MANAGE = "customer.disputes.manage"

CXC_VIEW_PERMISSIONS = (
    PERM_CXC_MENU,
    PERM_DOCUMENTS_MANAGE,
    PERM_COLLECTIONS_MANAGE,
    PERM_CREDIT_MANAGE,
)

PERMISSION_CATALOG: list[tuple[str, str]] = [
    (PERM_CASH_OPEN, "Caja: aperturar"),
    (PERM_CASH_CLOSE, "Caja: cerrar"),
    (PERM_INVOICE_ISSUE, "Facturación: emitir facturas"),
    (PERM_CASH_REPORT, "Caja: ver reportes"),
    (PERM_ADMIN_USERS, "Administración: usuarios y roles"),
    (PERM_INVENTORY_MANAGE, "Inventario: administrar catálogos y movimientos"),
    ("menu.dashboard.view", "Menú: tablero"),
    ("menu.facturacion.view", "Menú: facturación"),
    ("menu.caja.view", "Menú: caja"),
    ("menu.inventario.view", "Menú: inventario"),
    ("menu.reportes.view", "Menú: reportes"),
    ("menu.preferencias.view", "Menú: preferencias"),
    (PERM_CXC_MENU, "Menú: cuentas por cobrar"),
    (PERM_CUSTOMERS_MANAGE, "CxC: clientes"),
    (PERM_PAYMENT_TERMS_MANAGE, "CxC: condiciones de pago"),
    (PERM_DOCUMENTS_MANAGE, "CxC: documentos"),
    (PERM_DOCUMENTS_APPLY, "CxC: aplicar documentos"),
    (PERM_CREDIT_MANAGE, "CxC: líneas de crédito"),
    (PERM_COLLECTIONS_MANAGE, "CxC: gestiones de cobro"),
    (PERM_DISPUTES_MANAGE, "CxC: disputas"),
]

ROLE_FACTURADOR = "FACTURADOR"
ROLE_ADMINISTRADOR = "ADMINISTRADOR"

SEED_ROLES: dict[str, dict] = {
    ROLE_FACTURADOR: {
        "name": "Facturador POS",
        "description": "Puede aperturar y cerrar caja además de emitir facturas en punto de venta",
        "permissions": [
            PERM_CASH_OPEN,
            PERM_CASH_CLOSE,
            PERM_INVOICE_ISSUE,
            PERM_CASH_REPORT,
            "menu.dashboard.view",
            "menu.facturacion.view",
            "menu.caja.view",
        ],
    },
    ROLE_ADMINISTRADOR: {
        "name": "Administrador General",
        "description": "Acceso completo al mantenimiento y operaciones",
        "permissions": [key for key, _name in PERMISSION_CATALOG],
    },
}

RESTAURANT_DISABLED_MESSAGE = "Funcionalidad deshabilitada para modo retail"
RETAIL_DISABLED_MESSAGE = "El módulo de Cuentas por Cobrar no está disponible en modo restaurante"

INVALID_SESSION_MESSAGE = "Sesión no válida"
ADMIN_ONLY_MESSAGE = "Solo un administrador puede realizar esta acción"
