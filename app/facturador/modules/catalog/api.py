from __future__ import annotations

from flask import Blueprint, request

from app.facturador.constants import PERM_INVENTORY_MANAGE
from app.facturador.db import db_session
from app.facturador.errors import NotFoundError, created, ensure_valid, ok, raise_for_business_error
from app.facturador.modules.catalog.service import (
    article_to_dict,
    associate_warehouse,
    classification_to_dict,
    create_classification,
    create_price_list,
    create_unit,
    deactivate_article,
    get_article_by_code,
    get_current_price,
    list_article_warehouses,
    list_articles,
    list_classifications,
    list_price_lists,
    list_units,
    price_list_to_dict,
    remove_article_warehouse,
    set_article_price,
    set_kit_components,
    unit_to_dict,
    upsert_article,
    validate_article_payload,
)
from app.facturador.rbac import current_admin, require_admin_session, require_permissions
from app.facturador.utils import json_body, parse_bool, parse_date, to_int

bp = Blueprint("catalog", __name__)

_DUPLICATE = ("Ya existe",)


# ---------- Units ----------
@bp.get("/unidades")
@require_admin_session
def units_list():
    s = db_session()
    units = list_units(s, include_inactive=parse_bool(request.args.get("includeInactive")))
    return ok(items=[unit_to_dict(u) for u in units])


@bp.post("/unidades")
@require_permissions(PERM_INVENTORY_MANAGE)
def units_create():
    s = db_session()
    try:
        unit = create_unit(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(unit=unit_to_dict(unit))


# ---------- Classifications ----------
@bp.get("/clasificaciones")
@require_admin_session
def classifications_list():
    s = db_session()
    rows = list_classifications(s, level=to_int(request.args.get("level")), parent=request.args.get("parent"))
    return ok(items=[classification_to_dict(c) for c in rows])


@bp.post("/clasificaciones")
@require_permissions(PERM_INVENTORY_MANAGE)
def classifications_create():
    s = db_session()
    try:
        c = create_classification(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(classification=classification_to_dict(c))


# ---------- Articles ----------
@bp.get("/articulos")
@require_admin_session
def articles_list():
    s = db_session()
    rows = list_articles(
        s,
        search=request.args.get("q"),
        classification=request.args.get("classification"),
        article_type=request.args.get("type"),
        include_inactive=parse_bool(request.args.get("includeInactive")),
    )
    return ok(items=[article_to_dict(a) for a in rows])


@bp.post("/articulos")
@require_permissions(PERM_INVENTORY_MANAGE)
def articles_upsert():
    s = db_session()
    payload = json_body()
    ensure_valid(validate_article_payload(payload))
    try:
        article, was_created = upsert_article(s, payload, current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    if was_created:
        return created(article=article_to_dict(article))
    return ok(article=article_to_dict(article))


@bp.get("/articulos/<article_code>")
@require_admin_session
def article_detail(article_code: str):
    s = db_session()
    article = get_article_by_code(s, article_code)
    if not article:
        raise NotFoundError("Artículo no encontrado")
    return ok(article=article_to_dict(article))


@bp.delete("/articulos/<article_code>")
@require_permissions(PERM_INVENTORY_MANAGE)
def article_deactivate(article_code: str):
    s = db_session()
    article = get_article_by_code(s, article_code)
    if not article:
        raise NotFoundError("Artículo no encontrado")
    deactivate_article(s, article, current_admin())
    s.commit()
    return ok(article=article_to_dict(article))


@bp.get("/articulos/<article_code>/almacenes")
@require_admin_session
def article_warehouses_list(article_code: str):
    s = db_session()
    article = get_article_by_code(s, article_code)
    if not article:
        raise NotFoundError("Artículo no encontrado")
    return ok(items=list_article_warehouses(s, article))


@bp.post("/articulos/<article_code>/almacenes")
@require_permissions(PERM_INVENTORY_MANAGE)
def article_warehouses_add(article_code: str):
    s = db_session()
    article = get_article_by_code(s, article_code)
    if not article:
        raise NotFoundError("Artículo no encontrado")
    payload = json_body()
    try:
        associate_warehouse(
            s,
            article,
            payload.get("warehouse_code") or "",
            is_primary=parse_bool(payload.get("is_primary")),
            user=current_admin(),
        )
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(items=list_article_warehouses(s, article))


@bp.delete("/articulos/<article_code>/almacenes/<warehouse_code>")
@require_permissions(PERM_INVENTORY_MANAGE)
def article_warehouses_remove(article_code: str, warehouse_code: str):
    s = db_session()
    article = get_article_by_code(s, article_code)
    if not article:
        raise NotFoundError("Artículo no encontrado")
    try:
        remove_article_warehouse(s, article, warehouse_code, current_admin())
    except ValueError as e:
        raise_for_business_error(e, not_found_markers=("no está asociado",))
    s.commit()
    return ok(items=list_article_warehouses(s, article))


# ---------- Kits ----------
@bp.get("/kits")
@require_admin_session
def kits_get():
    s = db_session()
    code = request.args.get("kit")
    if code:
        kit = get_article_by_code(s, code)
        if not kit or kit.article_type != "KIT":
            raise NotFoundError("Kit no encontrado")
        return ok(kit=article_to_dict(kit))
    return ok(items=[article_to_dict(a) for a in list_articles(s, article_type="KIT")])


@bp.post("/kits")
@require_permissions(PERM_INVENTORY_MANAGE)
def kits_set():
    s = db_session()
    payload = json_body()
    kit = get_article_by_code(s, payload.get("kit_code"))
    if not kit:
        raise NotFoundError("Kit no encontrado")
    try:
        set_kit_components(s, kit, payload.get("components") or [], current_admin())
    except ValueError as e:
        raise_for_business_error(e, not_found_markers=("no registrado",))
    s.commit()
    return ok(kit=article_to_dict(kit))


# ---------- Prices ----------
@bp.get("/precios/listas")
@require_admin_session
def price_lists_list():
    s = db_session()
    return ok(items=[price_list_to_dict(p) for p in list_price_lists(s)])


@bp.post("/precios/listas")
@require_permissions(PERM_INVENTORY_MANAGE)
def price_lists_create():
    s = db_session()
    try:
        pl = create_price_list(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=_DUPLICATE)
    s.commit()
    return created(price_list=price_list_to_dict(pl))


@bp.get("/precios")
@require_admin_session
def prices_current():
    s = db_session()
    article_code = request.args.get("article") or ""
    list_code = request.args.get("list") or ""
    try:
        on_date = parse_date(request.args.get("date"))
    except ValueError as e:
        raise_for_business_error(e)
    price = get_current_price(s, article_code, list_code, on_date)
    if price is None:
        raise NotFoundError("No hay precio vigente para el artículo en la lista indicada")
    return ok(article_code=article_code.upper(), price_list_code=list_code.upper(), price=price)


@bp.post("/precios")
@require_permissions(PERM_INVENTORY_MANAGE)
def prices_set():
    s = db_session()
    try:
        ap = set_article_price(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("vigente",))
    s.commit()
    return created(
        price={
            "id": ap.id,
            "article_code": ap.article.article_code,
            "price_list_code": ap.price_list.code,
            "price": ap.price,
            "start_date": ap.start_date.isoformat(),
        }
    )
