"""
Health checks for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Kafka broker reachability
"""
import asyncio
from typing import Any, Dict

import structlog
from confluent_kafka.admin import AdminClient
from sqlalchemy import text

from payment_service.config import get_settings
from payment_service.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the database and Kafka."""

    def __init__(self, kafka_timeout_seconds: float = 5.0) -> None:
        self.settings = get_settings()
        self.kafka_timeout_seconds = kafka_timeout_seconds

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_kafka(self) -> Dict[str, Any]:
        """
        Check that the Kafka brokers answer a metadata request.

        Raises:
            HealthCheckError: If the brokers cannot be reached
        """
        try:
            admin_client = AdminClient({'bootstrap.servers': self.settings.kafka_bootstrap_servers})
            cluster = await asyncio.to_thread(
                admin_client.list_topics, timeout=self.kafka_timeout_seconds
            )

        except Exception as e:
            logger.error("kafka_health_check_failed", error=str(e))
            raise HealthCheckError(f"Kafka health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "kafka",
            "message": "Kafka brokers reachable",
            "brokers": len(cluster.brokers),
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("kafka", self.check_kafka)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {
                    "status": "unhealthy",
                    "service": name,
                    "error": str(e),
                }
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
