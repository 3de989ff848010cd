"""Room state services: store, gateway, barriers, air, endings, propagation.

Routes and socket handlers reach these through ``get_gateway()``; nothing
here knows about HTTP.
"""
from dataclasses import dataclass

from flask import current_app

from .gateway import MutationGateway
from .progression import ProgressionGraph
from .propagation import PropagationChannel
from .store import SessionStore


@dataclass
class RoomServices:
    store: SessionStore
    graph: ProgressionGraph
    channel: PropagationChannel
    gateway: MutationGateway


def init_room_services(flask_app, socketio) -> RoomServices:
    store = SessionStore()
    graph = ProgressionGraph.from_config(flask_app.config)
    channel = PropagationChannel(socketio, logger=flask_app.logger)
    gateway = MutationGateway(store, graph, channel, flask_app.config)
    services = RoomServices(store=store, graph=graph, channel=channel, gateway=gateway)
    flask_app.extensions['pyramid'] = services
    return services


def get_gateway() -> MutationGateway:
    return current_app.extensions['pyramid'].gateway
