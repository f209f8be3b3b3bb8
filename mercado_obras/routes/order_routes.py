from __future__ import annotations

import os

from flask import Blueprint, request, send_file

from mercado_obras.db import get_db
from mercado_obras.domain.contracts import Attachment, OrderTransitionInput
from mercado_obras.policies import current_actor
from mercado_obras.routes.common import order_service, respond


order_bp = Blueprint("orders", __name__)


def _uploaded_attachment() -> Attachment | None:
    upload = request.files.get("file") or request.files.get("attachment")
    if upload is None or not upload.filename:
        return None
    return Attachment(
        filename=upload.filename,
        content_type=upload.mimetype or "",
        data=upload.read(),
    )


@order_bp.route("/api/pedidos", methods=["GET"])
def orders_api():
    actor = current_actor()
    return respond(order_service().list_orders(get_db(), actor=actor))


@order_bp.route("/api/pedidos/<int:order_id>", methods=["GET"])
def order_detail_api(order_id: int):
    actor = current_actor()
    return respond(order_service().get_order(get_db(), order_id=order_id, actor=actor))


@order_bp.route("/api/pedidos/<int:order_id>/acoes/<string:action>", methods=["POST"])
def order_action_api(order_id: int, action: str):
    actor = current_actor()
    db = get_db()
    result = order_service().transition_order(
        db,
        OrderTransitionInput(
            order_id=order_id,
            actor_id=actor.id,
            action=action,
            attachment=_uploaded_attachment(),
        ),
        actor=actor,
    )
    db.commit()
    return respond(result, "order_updated")


@order_bp.route("/api/pedidos/<int:order_id>/anexos/<int:attachment_id>", methods=["GET"])
def order_attachment_api(order_id: int, attachment_id: int):
    actor = current_actor()
    attachment = order_service().get_attachment(get_db(), order_id=order_id, attachment_id=attachment_id, actor=actor)
    return send_file(
        attachment["path"],
        mimetype=attachment.get("content_type") or None,
        download_name=attachment.get("filename") or os.path.basename(attachment["path"]),
    )
