from __future__ import annotations

from flask import Blueprint, current_app, request

from app.facturador.db import db_session
from app.facturador.errors import BadRequestError, NotFoundError, created, ok, raise_for_business_error
from app.facturador.modules.preferences.models import InventoryAlert, NotificationChannel
from app.facturador.modules.preferences.service import (
    alert_to_dict,
    channel_to_dict,
    create_alert,
    create_channel,
    current_rate,
    delete_alert,
    delete_channel,
    evaluate_alerts,
    list_alerts,
    list_channels,
    list_rates,
    rate_to_dict,
    save_rate,
    update_alert,
    update_channel,
)
from app.facturador.rbac import current_admin, require_admin_session, require_administrator
from app.facturador.utils import json_body, parse_date

bp = Blueprint("preferences", __name__)


# ---------- Notification channels ----------
@bp.get("/notificaciones")
@require_admin_session
def channels_list():
    s = db_session()
    return ok(items=[channel_to_dict(c) for c in list_channels(s)])


@bp.post("/notificaciones")
@require_administrator
def channels_create():
    s = db_session()
    try:
        channel = create_channel(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return created(channel=channel_to_dict(channel))


@bp.patch("/notificaciones/<int:channel_id>")
@require_administrator
def channels_update(channel_id: int):
    s = db_session()
    channel = s.get(NotificationChannel, channel_id)
    if not channel:
        raise NotFoundError("Canal no encontrado")
    try:
        update_channel(s, channel, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e, conflict_markers=("Ya existe",))
    s.commit()
    return ok(channel=channel_to_dict(channel))


@bp.delete("/notificaciones/<int:channel_id>")
@require_administrator
def channels_delete(channel_id: int):
    s = db_session()
    channel = s.get(NotificationChannel, channel_id)
    if not channel:
        raise NotFoundError("Canal no encontrado")
    delete_channel(s, channel, current_admin())
    s.commit()
    return ok()


# ---------- Exchange rates ----------
@bp.get("/tipo-cambio")
@require_admin_session
def rates_list():
    s = db_session()
    try:
        date_from = parse_date(request.args.get("from"))
        date_to = parse_date(request.args.get("to"))
    except ValueError as e:
        raise BadRequestError(str(e)) from e
    rows = list_rates(s, date_from=date_from, date_to=date_to, base=request.args.get("base"), quote=request.args.get("quote"))
    return ok(items=[rate_to_dict(r) for r in rows])


@bp.get("/tipo-cambio/actual")
@require_admin_session
def rates_current():
    s = db_session()
    try:
        on_date = parse_date(request.args.get("date"))
    except ValueError as e:
        raise BadRequestError(str(e)) from e
    rate = current_rate(
        s,
        on_date,
        base=request.args.get("base") or current_app.config["LOCAL_CURRENCY_CODE"],
        quote=request.args.get("quote") or current_app.config["FOREIGN_CURRENCY_CODE"],
    )
    return ok(rate=rate_to_dict(rate) if rate else None)


@bp.post("/tipo-cambio")
@require_administrator
def rates_save():
    s = db_session()
    try:
        rate = save_rate(
            s,
            json_body(),
            current_admin(),
            default_base=current_app.config["LOCAL_CURRENCY_CODE"],
            default_quote=current_app.config["FOREIGN_CURRENCY_CODE"],
        )
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(rate=rate_to_dict(rate))


# ---------- Inventory alerts ----------
@bp.get("/alertas")
@require_admin_session
def alerts_list():
    s = db_session()
    return ok(items=[alert_to_dict(a) for a in list_alerts(s)])


@bp.get("/alertas/evaluacion")
@require_admin_session
def alerts_evaluate():
    s = db_session()
    return ok(items=evaluate_alerts(s))


@bp.post("/alertas")
@require_administrator
def alerts_create():
    s = db_session()
    try:
        alert = create_alert(s, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return created(alert=alert_to_dict(alert))


@bp.patch("/alertas/<int:alert_id>")
@require_administrator
def alerts_update(alert_id: int):
    s = db_session()
    alert = s.get(InventoryAlert, alert_id)
    if not alert:
        raise NotFoundError("Alerta no encontrada")
    try:
        update_alert(s, alert, json_body(), current_admin())
    except ValueError as e:
        raise_for_business_error(e)
    s.commit()
    return ok(alert=alert_to_dict(alert))


@bp.delete("/alertas/<int:alert_id>")
@require_administrator
def alerts_delete(alert_id: int):
    s = db_session()
    alert = s.get(InventoryAlert, alert_id)
    if not alert:
        raise NotFoundError("Alerta no encontrada")
    delete_alert(s, alert, current_admin())
    s.commit()
    return ok()
