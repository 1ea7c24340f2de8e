from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.facturador.audit import record_event
from app.facturador.modules.catalog.models import (
    Article,
    ArticleClassification,
    ArticleKit,
    ArticlePrice,
    ArticleWarehouse,
    PriceList,
    Unit,
    Warehouse,
)
from app.facturador.utils import clean_code, clean_str, iso, parse_date, to_float, to_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.facturador.models import AdminUser


ARTICLE_TYPES = ("TERMINADO", "KIT")
MAX_CLASSIFICATION_LEVEL = 6


# ---------- Serializers ----------
def unit_to_dict(u: Unit) -> dict:
    return {"id": u.id, "code": u.code, "name": u.name, "is_active": u.is_active}


def classification_to_dict(c: ArticleClassification) -> dict:
    return {
        "id": c.id,
        "level": c.level,
        "code": c.code,
        "full_code": c.full_code,
        "name": c.name,
        "parent_full_code": c.parent_full_code,
        "is_active": c.is_active,
    }


def warehouse_to_dict(w: Warehouse) -> dict:
    return {"id": w.id, "code": w.code, "name": w.name, "is_active": w.is_active}


def article_to_dict(a: Article) -> dict:
    return {
        "id": a.id,
        "article_code": a.article_code,
        "name": a.name,
        "article_type": a.article_type,
        "classification_full_code": a.classification_full_code,
        "storage_unit": a.storage_unit,
        "retail_unit": a.retail_unit,
        "conversion_factor": a.conversion_factor,
        "default_warehouse_code": a.default_warehouse.code if a.default_warehouse else None,
        "is_active": a.is_active,
        "components": [
            {
                "component_code": k.component.article_code,
                "component_name": k.component.name,
                "qty_retail": k.component_qty_retail,
            }
            for k in a.components
        ],
    }


def price_list_to_dict(p: PriceList) -> dict:
    return {
        "id": p.id,
        "code": p.code,
        "name": p.name,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "is_active": p.is_active,
    }


# ---------- Units ----------
def list_units(s: "Session", *, include_inactive: bool = False) -> list[Unit]:
    q = s.query(Unit)
    if not include_inactive:
        q = q.filter(Unit.is_active.is_(True))
    return q.order_by(Unit.code.asc()).all()


def create_unit(s: "Session", payload: dict, user: "AdminUser") -> Unit:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 60)
    if not code or not name:
        raise ValueError("El código y el nombre de la unidad son obligatorios")
    if s.query(Unit).filter(Unit.code == code).one_or_none():
        raise ValueError("Ya existe una unidad con ese código")
    unit = Unit(code=code[:20], name=name, is_active=True)
    s.add(unit)
    s.flush()
    record_event(s, actor=user, action="catalog.unit.create", entity_type="Unit", entity_id=str(unit.id), metadata={"code": unit.code})
    return unit


# ---------- Classifications ----------
def list_classifications(s: "Session", *, level: int | None = None, parent: str | None = None) -> list[ArticleClassification]:
    q = s.query(ArticleClassification).filter(ArticleClassification.is_active.is_(True))
    if level is not None:
        q = q.filter(ArticleClassification.level == level)
    if parent:
        q = q.filter(ArticleClassification.parent_full_code == clean_code(parent))
    return q.order_by(ArticleClassification.full_code.asc()).all()


def create_classification(s: "Session", payload: dict, user: "AdminUser") -> ArticleClassification:
    level = to_int(payload.get("level"))
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 120)
    parent_code = clean_code(payload.get("parent_full_code")) or None
    if level is None or level < 1 or level > MAX_CLASSIFICATION_LEVEL:
        raise ValueError("El nivel de clasificación debe estar entre 1 y 6")
    if not code or not name:
        raise ValueError("El código y el nombre de la clasificación son obligatorios")
    if len(code) > 8:
        raise ValueError("El código de clasificación admite máximo 8 caracteres")

    if level == 1:
        parent_code = None
    else:
        if not parent_code:
            raise ValueError("Debes indicar la clasificación padre")
        parent = s.query(ArticleClassification).filter(ArticleClassification.full_code == parent_code).one_or_none()
        if not parent or parent.level != level - 1:
            raise ValueError("La clasificación padre no existe en el nivel anterior")

    full_code = f"{parent_code or ''}{code}"
    if len(full_code) > 24:
        raise ValueError("El código completo de clasificación excede 24 caracteres")
    if s.query(ArticleClassification).filter(ArticleClassification.full_code == full_code).one_or_none():
        raise ValueError("Ya existe una clasificación con ese código")

    now = datetime.utcnow()
    c = ArticleClassification(
        level=level,
        code=code,
        full_code=full_code,
        name=name,
        parent_full_code=parent_code,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="catalog.classification.create",
        entity_type="ArticleClassification",
        entity_id=str(c.id),
        metadata={"full_code": full_code, "level": level},
    )
    return c


# ---------- Warehouses ----------
def list_warehouses(s: "Session", *, include_inactive: bool = False) -> list[Warehouse]:
    q = s.query(Warehouse)
    if not include_inactive:
        q = q.filter(Warehouse.is_active.is_(True))
    return q.order_by(Warehouse.code.asc()).all()


def get_warehouse_by_code(s: "Session", code: str | None, *, active_only: bool = True) -> Warehouse | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    q = s.query(Warehouse).filter(Warehouse.code == normalized)
    if active_only:
        q = q.filter(Warehouse.is_active.is_(True))
    return q.one_or_none()


def create_warehouse(s: "Session", payload: dict, user: "AdminUser") -> Warehouse:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 100)
    if not code or not name:
        raise ValueError("El código y el nombre del almacén son obligatorios")
    if len(code) > 20:
        raise ValueError("El código del almacén admite máximo 20 caracteres")
    if get_warehouse_by_code(s, code, active_only=False):
        raise ValueError("Ya existe un almacén con ese código")
    w = Warehouse(code=code, name=name, is_active=bool(payload.get("is_active", True)))
    s.add(w)
    s.flush()
    record_event(s, actor=user, action="catalog.warehouse.create", entity_type="Warehouse", entity_id=str(w.id), metadata={"code": code})
    return w


def update_warehouse(s: "Session", warehouse: Warehouse, payload: dict, user: "AdminUser") -> Warehouse:
    changes = {}
    if "name" in payload:
        name = clean_str(payload.get("name"), 100)
        if not name:
            raise ValueError("El nombre del almacén es obligatorio")
        if name != warehouse.name:
            changes["name"] = {"old": warehouse.name, "new": name}
            warehouse.name = name
    if "is_active" in payload:
        active = bool(payload.get("is_active"))
        if active != warehouse.is_active:
            changes["is_active"] = {"old": warehouse.is_active, "new": active}
            warehouse.is_active = active
    if changes:
        record_event(
            s,
            actor=user,
            action="catalog.warehouse.edit",
            entity_type="Warehouse",
            entity_id=str(warehouse.id),
            metadata={"code": warehouse.code, "changes": changes},
        )
    return warehouse


# ---------- Articles ----------
def get_article_by_code(s: "Session", code: str | None) -> Article | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(Article).filter(Article.article_code == normalized).one_or_none()


def list_articles(
    s: "Session",
    *,
    search: str | None = None,
    classification: str | None = None,
    article_type: str | None = None,
    include_inactive: bool = False,
) -> list[Article]:
    q = s.query(Article)
    if not include_inactive:
        q = q.filter(Article.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Article.article_code.ilike(like), Article.name.ilike(like)))
    if classification:
        q = q.filter(Article.classification_full_code.like(f"{clean_code(classification)}%"))
    if article_type:
        q = q.filter(Article.article_type == clean_code(article_type))
    return q.order_by(Article.article_code.asc()).all()


def validate_article_payload(payload: dict) -> list[str]:
    errors = []
    if not clean_code(payload.get("article_code")):
        errors.append("El código del artículo es obligatorio.")
    if not clean_str(payload.get("name")):
        errors.append("El nombre del artículo es obligatorio.")
    article_type = clean_code(payload.get("article_type") or "TERMINADO")
    if article_type not in ARTICLE_TYPES:
        errors.append(f"Tipo de artículo inválido. Debe ser uno de: {', '.join(ARTICLE_TYPES)}")
    factor = to_float(payload.get("conversion_factor"), 1.0)
    if factor is None or factor <= 0:
        errors.append("El factor de conversión debe ser mayor a cero.")
    if not clean_code(payload.get("storage_unit")) or not clean_code(payload.get("retail_unit")):
        errors.append("Las unidades de almacén y detalle son obligatorias.")
    return errors


def upsert_article(s: "Session", payload: dict, user: "AdminUser") -> tuple[Article, bool]:
    """Create or update an article by code. Returns (article, created)."""
    code = clean_code(payload.get("article_code"))
    storage_unit = clean_code(payload.get("storage_unit"))
    retail_unit = clean_code(payload.get("retail_unit"))
    for unit_code in {storage_unit, retail_unit}:
        if not s.query(Unit).filter(Unit.code == unit_code).one_or_none():
            raise ValueError(f"La unidad {unit_code} no existe")

    classification = clean_code(payload.get("classification_full_code")) or None
    if classification and not s.query(ArticleClassification).filter(ArticleClassification.full_code == classification).one_or_none():
        raise ValueError("La clasificación indicada no existe")

    default_wh = None
    wh_code = clean_code(payload.get("default_warehouse_code"))
    if wh_code:
        default_wh = get_warehouse_by_code(s, wh_code)
        if not default_wh:
            raise ValueError(f"El almacén {wh_code} no existe o está inactivo")

    now = datetime.utcnow()
    article = get_article_by_code(s, code)
    created = article is None
    if article is None:
        article = Article(article_code=code, created_at=now)
        s.add(article)

    article.name = clean_str(payload.get("name"), 200) or article.name
    article.article_type = clean_code(payload.get("article_type") or "TERMINADO")
    article.conversion_factor = float(to_float(payload.get("conversion_factor"), 1.0) or 1.0)
    article.storage_unit = storage_unit
    article.retail_unit = retail_unit
    article.classification_full_code = classification
    article.default_warehouse_id = default_wh.id if default_wh else None
    article.default_warehouse = default_wh
    if "is_active" in payload:
        article.is_active = bool(payload.get("is_active"))
    article.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="catalog.article.create" if created else "catalog.article.edit",
        entity_type="Article",
        entity_id=str(article.id),
        metadata={"article_code": article.article_code, "article_type": article.article_type},
    )
    return article, created


def deactivate_article(s: "Session", article: Article, user: "AdminUser") -> Article:
    article.is_active = False
    article.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="catalog.article.deactivate", entity_type="Article", entity_id=str(article.id))
    return article


# ---------- Article <-> warehouse ----------
def list_article_warehouses(s: "Session", article: Article) -> list[dict]:
    links = (
        s.query(ArticleWarehouse)
        .filter(ArticleWarehouse.article_id == article.id)
        .order_by(ArticleWarehouse.is_primary.desc(), ArticleWarehouse.id.asc())
        .all()
    )
    return [
        {"warehouse_code": l.warehouse.code, "warehouse_name": l.warehouse.name, "is_primary": l.is_primary}
        for l in links
    ]


def associate_warehouse(s: "Session", article: Article, warehouse_code: str, *, is_primary: bool, user: "AdminUser") -> ArticleWarehouse:
    warehouse = get_warehouse_by_code(s, warehouse_code)
    if not warehouse:
        raise ValueError(f"El almacén {clean_code(warehouse_code)} no existe o está inactivo")
    link = (
        s.query(ArticleWarehouse)
        .filter(ArticleWarehouse.article_id == article.id, ArticleWarehouse.warehouse_id == warehouse.id)
        .one_or_none()
    )
    if link is None:
        link = ArticleWarehouse(article_id=article.id, warehouse_id=warehouse.id, is_primary=False)
        link.warehouse = warehouse
        s.add(link)
    if is_primary:
        for other in s.query(ArticleWarehouse).filter(ArticleWarehouse.article_id == article.id).all():
            other.is_primary = False
        link.is_primary = True
    s.flush()
    record_event(
        s,
        actor=user,
        action="catalog.article.warehouse_link",
        entity_type="Article",
        entity_id=str(article.id),
        metadata={"warehouse": warehouse.code, "is_primary": link.is_primary},
    )
    return link


def remove_article_warehouse(s: "Session", article: Article, warehouse_code: str, user: "AdminUser") -> None:
    warehouse = get_warehouse_by_code(s, warehouse_code, active_only=False)
    link = None
    if warehouse:
        link = (
            s.query(ArticleWarehouse)
            .filter(ArticleWarehouse.article_id == article.id, ArticleWarehouse.warehouse_id == warehouse.id)
            .one_or_none()
        )
    if link is None:
        raise ValueError("El artículo no está asociado a ese almacén")
    s.delete(link)
    record_event(
        s,
        actor=user,
        action="catalog.article.warehouse_unlink",
        entity_type="Article",
        entity_id=str(article.id),
        metadata={"warehouse": warehouse.code},
    )


# ---------- Kits ----------
def set_kit_components(s: "Session", kit: Article, components: list[dict], user: "AdminUser") -> Article:
    if kit.article_type != "KIT":
        raise ValueError("El artículo indicado no es un kit")
    if not components:
        raise ValueError("Debes indicar al menos un componente")

    resolved: list[tuple[Article, float]] = []
    seen: set[str] = set()
    for comp in components:
        comp_code = clean_code(comp.get("component_code"))
        qty = to_float(comp.get("qty_retail"))
        if qty is None or qty <= 0:
            raise ValueError(f"Cantidad inválida para el componente {comp_code}")
        if comp_code == kit.article_code:
            raise ValueError("Un kit no puede contenerse a sí mismo")
        if comp_code in seen:
            raise ValueError(f"Componente duplicado: {comp_code}")
        seen.add(comp_code)
        article = get_article_by_code(s, comp_code)
        if not article:
            raise ValueError(f"Componente no registrado: {comp_code}")
        if article.article_type == "KIT":
            raise ValueError(f"El componente {comp_code} no puede ser otro kit")
        resolved.append((article, qty))

    kit.components.clear()
    s.flush()
    for article, qty in resolved:
        kit.components.append(ArticleKit(component_article_id=article.id, component=article, component_qty_retail=qty))
    kit.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="catalog.kit.set_components",
        entity_type="Article",
        entity_id=str(kit.id),
        metadata={"components": {a.article_code: q for a, q in resolved}},
    )
    return kit


# ---------- Price lists ----------
def list_price_lists(s: "Session") -> list[PriceList]:
    return s.query(PriceList).order_by(PriceList.code.asc()).all()


def get_price_list_by_code(s: "Session", code: str | None) -> PriceList | None:
    normalized = clean_code(code)
    if not normalized:
        return None
    return s.query(PriceList).filter(PriceList.code == normalized).one_or_none()


def create_price_list(s: "Session", payload: dict, user: "AdminUser") -> PriceList:
    code = clean_code(payload.get("code"))
    name = clean_str(payload.get("name"), 120)
    if not code or not name:
        raise ValueError("El código y el nombre de la lista de precios son obligatorios")
    if get_price_list_by_code(s, code):
        raise ValueError("Ya existe una lista de precios con ese código")
    start = parse_date(payload.get("start_date")) or date.today()
    end = parse_date(payload.get("end_date"))
    if end and end < start:
        raise ValueError("La fecha final no puede ser anterior a la inicial")
    pl = PriceList(code=code[:30], name=name, start_date=start, end_date=end, is_active=bool(payload.get("is_active", True)))
    s.add(pl)
    s.flush()
    record_event(s, actor=user, action="catalog.price_list.create", entity_type="PriceList", entity_id=str(pl.id), metadata={"code": pl.code})
    return pl


def set_article_price(s: "Session", payload: dict, user: "AdminUser") -> ArticlePrice:
    """New price for an article on a list; closes the previously open price the day before."""
    article = get_article_by_code(s, payload.get("article_code"))
    if not article:
        raise ValueError("Artículo no encontrado")
    price_list = get_price_list_by_code(s, payload.get("price_list_code"))
    if not price_list:
        raise ValueError("La lista de precios indicada no existe")
    price = to_float(payload.get("price"))
    if price is None or price < 0:
        raise ValueError("El precio debe ser mayor o igual a cero")
    start = parse_date(payload.get("start_date")) or date.today()

    open_prices = (
        s.query(ArticlePrice)
        .filter(
            ArticlePrice.article_id == article.id,
            ArticlePrice.price_list_id == price_list.id,
            ArticlePrice.end_date.is_(None),
        )
        .all()
    )
    for previous in open_prices:
        if previous.start_date >= start:
            raise ValueError("Ya existe un precio vigente con fecha igual o posterior")
        previous.end_date = start - timedelta(days=1)

    ap = ArticlePrice(article_id=article.id, price_list_id=price_list.id, price=price, start_date=start)
    ap.article = article
    ap.price_list = price_list
    s.add(ap)
    s.flush()
    record_event(
        s,
        actor=user,
        action="catalog.price.set",
        entity_type="ArticlePrice",
        entity_id=str(ap.id),
        metadata={"article_code": article.article_code, "price_list": price_list.code, "price": price, "start_date": start.isoformat()},
    )
    return ap


def get_current_price(s: "Session", article_code: str, price_list_code: str, on_date: date | None = None) -> float | None:
    on_date = on_date or date.today()
    article = get_article_by_code(s, article_code)
    price_list = get_price_list_by_code(s, price_list_code)
    if not article or not price_list:
        return None
    row = (
        s.query(ArticlePrice)
        .filter(
            ArticlePrice.article_id == article.id,
            ArticlePrice.price_list_id == price_list.id,
            ArticlePrice.start_date <= on_date,
            or_(ArticlePrice.end_date.is_(None), ArticlePrice.end_date >= on_date),
        )
        .order_by(ArticlePrice.start_date.desc())
        .first()
    )
    return row.price if row else None
