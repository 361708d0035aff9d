"""
Webhook + API server (aiohttp.web)

Public:
    POST /api/webhook/transactions   trade notifications, always acknowledged
    GET  /api/health
    GET  /api/leaderboard
    GET  /api/reward-pool
    GET  /api/global-stats
    GET  /api/hall-of-degens
    GET  /api/winners
    GET  /api/burns

Admin (x-admin-key header, or adminKey/password in the JSON body):
    GET  /api/admin/system-status
    POST /api/admin/start-system | stop-system | resume | end-round | claim-fees
    POST /api/admin/set-base-reward | update-signature | update-burn
"""

import asyncio
import hmac
import time
from typing import Any, Dict, Optional, Set

from aiohttp import web

from volking.core.config import EngineConfig
from volking.core.errors import InvalidTransition
from volking.core.logger import get_logger
from volking.core.metrics import get_metrics
from volking.core.round_orchestrator import RoundOrchestrator
from volking.core.round_state import RoundPhase
from volking.services.trade_processor import TradeProcessor


logger = get_logger(__name__)
metrics = get_metrics()


def _mask(address: str) -> str:
    return f"{address[:8]}..." if address else "not set"


def _limit(request: web.Request, default: int = 50) -> int:
    try:
        return max(1, int(request.query.get("limit", default)))
    except ValueError:
        return default


async def _json_body(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text='{"error": "invalid json body"}', content_type="application/json")
    return body if isinstance(body, dict) else {}


class WebhookServer:
    """
    Usage:
        server = WebhookServer(config, orchestrator, processor, persistence)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        config: EngineConfig,
        orchestrator: RoundOrchestrator,
        processor: TradeProcessor,
        persistence,
        rpc_manager=None
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.processor = processor
        self.persistence = persistence
        self.rpc_manager = rpc_manager

        self._runner: Optional[web.AppRunner] = None
        self._background: Set[asyncio.Task] = set()

    # ============================================================================
    # APP
    # ============================================================================

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[self._error_middleware, self._admin_middleware])

        app.router.add_post("/api/webhook/transactions", self.webhook_handler)
        app.router.add_get("/api/health", self.health_handler)
        app.router.add_get("/api/leaderboard", self.leaderboard_handler)
        app.router.add_get("/api/reward-pool", self.reward_pool_handler)
        app.router.add_get("/api/global-stats", self.global_stats_handler)
        app.router.add_get("/api/hall-of-degens", self.hall_of_degens_handler)
        app.router.add_get("/api/winners", self.winners_handler)
        app.router.add_get("/api/burns", self.burns_handler)

        app.router.add_get("/api/admin/system-status", self.system_status_handler)
        app.router.add_post("/api/admin/start-system", self.start_system_handler)
        app.router.add_post("/api/admin/stop-system", self.stop_system_handler)
        app.router.add_post("/api/admin/resume", self.resume_handler)
        app.router.add_post("/api/admin/end-round", self.end_round_handler)
        app.router.add_post("/api/admin/claim-fees", self.claim_fees_handler)
        app.router.add_post("/api/admin/set-base-reward", self.set_base_reward_handler)
        app.router.add_post("/api/admin/update-signature", self.update_signature_handler)
        app.router.add_post("/api/admin/update-burn", self.update_burn_handler)

        app.on_shutdown.append(self._drain_background)
        return app

    async def start(self) -> None:
        app = self.create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host=self.config.webhook.host, port=self.config.webhook.port)
        await site.start()
        logger.info("webhook_server_started", host=self.config.webhook.host, port=self.config.webhook.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("webhook_server_stopped")

    async def _drain_background(self, app: web.Application) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ============================================================================
    # MIDDLEWARE
    # ============================================================================

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except InvalidTransition as e:
            return web.json_response({"success": False, "error": str(e)}, status=409)
        except ValueError as e:
            return web.json_response({"success": False, "error": str(e)}, status=400)
        except Exception as e:
            metrics.increment_counter("http_errors")
            logger.error("http_handler_failed", path=request.path, error=str(e), exc_info=True)
            return web.json_response({"success": False, "error": str(e)}, status=500)

    @web.middleware
    async def _admin_middleware(self, request: web.Request, handler):
        if request.path.startswith("/api/admin/") and request.method == "POST":
            if not await self._authorized(request):
                logger.warning("admin_unauthorized", path=request.path, remote=request.remote)
                return web.json_response({"error": "Unauthorized"}, status=401)
        return await handler(request)

    async def _authorized(self, request: web.Request) -> bool:
        expected = self.config.webhook.admin_key
        if not expected:
            return False

        provided = request.headers.get("x-admin-key")
        if not provided:
            body = await _json_body(request)
            provided = body.get("adminKey") or body.get("password")
        return bool(provided) and hmac.compare_digest(str(provided), expected)

    # ============================================================================
    # WEBHOOK
    # ============================================================================

    def _system_active(self) -> bool:
        return self.orchestrator.phase != RoundPhase.INACTIVE

    async def webhook_handler(self, request: web.Request) -> web.Response:
        """Acknowledge first, then process in the background"""
        system_active = self._system_active()
        metrics.increment_counter("webhooks_received")

        try:
            payload = await request.json()
        except ValueError:
            payload = None
            logger.warning("webhook_invalid_json")

        if system_active and payload is not None:
            task = asyncio.create_task(self._process_payload(payload))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return web.json_response({
            "success": True,
            "systemActive": system_active,
            "message": "Transaction accepted" if system_active else "System inactive - transaction ignored",
        })

    async def _process_payload(self, payload: Any) -> None:
        try:
            await self.processor.process_batch(payload)
        except Exception as e:
            metrics.increment_counter("webhook_processing_errors")
            logger.error("webhook_processing_failed", error=str(e), exc_info=True)

    # ============================================================================
    # PUBLIC API
    # ============================================================================

    async def health_handler(self, request: web.Request) -> web.Response:
        orchestrator = self.orchestrator
        db_health = await self.persistence.check_health()
        wallets = self.config.wallets
        pct = self.config.distribution
        features = self.config.features

        body = {
            "status": "ok",
            "systemActive": self._system_active(),
            "phase": orchestrator.phase.value,
            "database": "connected" if db_health.get("healthy") else "disconnected",
            "roundStart": orchestrator.state.current_round_start,
            "roundNumber": orchestrator.state.round_number,
            "traders": len(orchestrator.ledger),
            "cacheSize": len(orchestrator.classifier),
            "roundInProgress": orchestrator.state.round_in_progress,
            "stats": orchestrator.state.stats.to_dict(),
            "features": {
                "feeCollection": features.fee_collection,
                "rewardDistribution": features.reward_distribution,
                "buybackBurn": features.buyback_burn,
                "autoClaim": features.auto_claim,
            },
            "config": {
                "tokenDecimals": self.config.swap.token_decimals,
                "tokenAddress": _mask(wallets.token_mint),
                "creatorFeeWallet": _mask(wallets.creator_fee_wallet),
                "treasuryWallet": _mask(wallets.treasury_wallet),
                "rewardWallet": _mask(wallets.reward_wallet),
            },
            "feeDistribution": {
                "treasury": f"{pct.treasury_pct * 100:g}%",
                "winnerReward": f"{pct.winner_pct * 100:g}%",
                "nextRoundBase": f"{pct.next_round_seed_pct * 100:g}%",
                "buybackBurn": f"{pct.buyback_pct * 100:g}%",
            },
        }
        if self.rpc_manager is not None:
            body["rpc"] = self.rpc_manager.get_health_stats()
        return web.json_response(body)

    async def leaderboard_handler(self, request: web.Request) -> web.Response:
        state = self.orchestrator.state
        return web.json_response({
            "systemActive": self._system_active(),
            "roundStart": state.current_round_start,
            "nextRoundStart": state.current_round_start + self.config.timing.round_duration_s,
            "roundNumber": state.round_number,
            "leaderboard": self.orchestrator.leaderboard(_limit(request, 10)),
            "totalTraders": len(self.orchestrator.ledger),
            "volumeUnit": "SOL",
        })

    async def reward_pool_handler(self, request: web.Request) -> web.Response:
        pool = self.orchestrator.reward_pool()
        state = self.orchestrator.state
        pool.update({
            "totalRewardsPaid": state.total_rewards_paid,
            "totalSupplyBurned": state.total_supply_burned,
            "roundInProgress": state.round_in_progress,
        })
        return web.json_response(pool)

    async def global_stats_handler(self, request: web.Request) -> web.Response:
        state = self.orchestrator.state
        degens = await self.persistence.get_hall_of_degens()
        return web.json_response({
            "totalRewardsPaid": state.total_rewards_paid,
            "totalSupplyBurned": state.total_supply_burned,
            "totalRoundsCompleted": state.total_rounds_completed,
            "totalUniqueWinners": len(degens),
            "currentRoundNumber": state.round_number,
            "startReward": state.base_reward,
            "lastUpdated": time.time(),
        })

    async def hall_of_degens_handler(self, request: web.Request) -> web.Response:
        degens = await self.persistence.get_hall_of_degens()
        transfers = await self.persistence.get_reward_transfers(50)
        return web.json_response({
            "degens": degens[:_limit(request)],
            "total": len(degens),
            "recentTransfers": [t.to_dict() for t in transfers],
        })

    async def winners_handler(self, request: web.Request) -> web.Response:
        winners = await self.persistence.get_winners(_limit(request))
        return web.json_response({"winners": [w.to_dict() for w in winners], "total": len(winners)})

    async def burns_handler(self, request: web.Request) -> web.Response:
        burns = await self.persistence.get_burns(_limit(request))
        return web.json_response({"burns": [b.to_dict() for b in burns], "total": len(burns)})

    # ============================================================================
    # ADMIN
    # ============================================================================

    async def system_status_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.orchestrator.status())

    async def start_system_handler(self, request: web.Request) -> web.Response:
        started = await self.orchestrator.start()
        return web.json_response({"success": True, "message": "System started", **started})

    async def stop_system_handler(self, request: web.Request) -> web.Response:
        await self.orchestrator.stop()
        return web.json_response({"success": True, "message": "System stopped"})

    async def resume_handler(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        resumed = await self.orchestrator.resume(reset_claimed_fees=bool(body.get("resetClaimedFees", False)))
        return web.json_response({"success": True, "message": "System resumed", **resumed})

    async def end_round_handler(self, request: web.Request) -> web.Response:
        result = await self.orchestrator.end_round(trigger="admin")
        return web.json_response({"success": result.error is None, "result": result.to_dict()})

    async def claim_fees_handler(self, request: web.Request) -> web.Response:
        result = await self.orchestrator.claim_fees()
        return web.json_response({
            **result.to_dict(),
            "claimedFees": self.orchestrator.state.claimed_fees,
            "currentRewardPool": self.orchestrator.current_reward(),
        })

    async def set_base_reward_handler(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        if "reward" not in body:
            raise ValueError("reward is required")
        base_reward = await self.orchestrator.set_base_reward(float(body["reward"]))
        return web.json_response({"success": True, "baseReward": base_reward})

    async def update_signature_handler(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        wallet = body.get("wallet")
        signature = body.get("signature")
        if not wallet or not signature or body.get("roundStart") is None:
            raise ValueError("wallet, roundStart and signature are required")

        updated = await self.persistence.update_winner_signature(wallet, float(body["roundStart"]), signature)
        logger.info("winner_signature_updated", wallet=wallet, signature=signature, rows=updated)
        return web.json_response({
            "success": True,
            "message": "Signature updated in database",
            "wallet": wallet,
            "signature": signature,
            "updated": updated,
        })

    async def update_burn_handler(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        signature = body.get("signature")
        if not signature or body.get("roundNumber") is None or body.get("tokensBurned") is None:
            raise ValueError("roundNumber, tokensBurned and signature are required")

        total = await self.orchestrator.update_burn(
            int(body["roundNumber"]), float(body["tokensBurned"]), signature
        )
        return web.json_response({
            "success": True,
            "message": "Burn record updated in database",
            "totalSupplyBurned": total,
        })
