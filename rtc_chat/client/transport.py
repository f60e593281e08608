"""aiortc-backed transport used by the negotiation state machine."""

import logging
from typing import Callable, List, Optional

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp


def description_to_dict(description: RTCSessionDescription) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def candidate_from_dict(candidate: dict):
    """Build an aiortc candidate from a browser ``RTCIceCandidateInit`` dict.

    Returns:
        RTCIceCandidate, or None for the empty end-of-candidates marker.
    """
    sdp = candidate.get("candidate") or ""
    if sdp.startswith("candidate:"):
        sdp = sdp.split(":", 1)[1]
    if not sdp:
        return None
    ice_candidate = candidate_from_sdp(sdp)
    ice_candidate.sdpMid = candidate.get("sdpMid")
    ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
    return ice_candidate


class PeerTransport:
    """Thin adapter over RTCPeerConnection.

    Descriptions and candidates cross this boundary as plain dicts so the
    rest of the client never touches aiortc types.
    """

    def __init__(self, ice_servers: Optional[List[dict]] = None):
        self.pc = self._create_peer_connection(ice_servers or [])

    def _create_peer_connection(self, ice_servers: List[dict]) -> RTCPeerConnection:
        """Create RTCPeerConnection with the configured ICE servers.

        Returns:
            RTCPeerConnection configured with ICE servers.
        """
        if ice_servers:
            ice_server_objects = [RTCIceServer(**server) for server in ice_servers]
            config = RTCConfiguration(iceServers=ice_server_objects)
            logging.info(
                f"Creating RTCPeerConnection with {len(ice_server_objects)} ICE server(s)"
            )
            return RTCPeerConnection(configuration=config)

        logging.warning("No ICE servers configured, using default RTCPeerConnection")
        return RTCPeerConnection()

    @property
    def connection_state(self) -> str:
        return self.pc.connectionState

    @property
    def ice_connection_state(self) -> str:
        return self.pc.iceConnectionState

    def on(self, event: str, handler: Callable) -> None:
        """Subscribe to a peer connection event (e.g. "datachannel")."""
        self.pc.on(event, handler)

    def create_data_channel(self, label: str) -> RTCDataChannel:
        return self.pc.createDataChannel(label)

    async def create_offer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createOffer())
        return description_to_dict(self.pc.localDescription)

    async def create_answer(self) -> dict:
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        return description_to_dict(self.pc.localDescription)

    async def set_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_candidate(self, candidate: dict) -> None:
        ice_candidate = candidate_from_dict(candidate)
        if ice_candidate is None:
            logging.debug("Ignoring end-of-candidates marker")
            return
        await self.pc.addIceCandidate(ice_candidate)

    async def close(self) -> None:
        await self.pc.close()
