"""
Instance generation service.

Turns weekly templates into dated session rows up to a horizon, either for
one template or for every scheduled template in the database.
"""

import asyncio
import time
from datetime import date
from typing import Callable, Optional

import structlog

from ..domain.entities import ScheduleSession
from ..domain.exceptions import SessionNotFoundException, SpeddyException
from ..metrics import track_instance_generation, track_instances_created
from ..repositories.schedule_repository import ScheduleRepository
from ..scheduling.instances import (InstanceGenerationOptions, build_instances,
                                    instance_dates, resolve_end_date,
                                    validate_template)
from ..tracing import get_tracer

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class InstanceService:
    """Creates session instances from templates."""

    def __init__(
        self,
        repository: ScheduleRepository,
        batch_size: int = 10,
        page_size: int = 1000,
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository
        self.batch_size = batch_size
        self.page_size = page_size
        self.today = today

    async def create_instances_from_template(
        self,
        template_id: str,
        options: Optional[InstanceGenerationOptions] = None,
    ) -> list[ScheduleSession]:
        """
        Create the missing instances of one template.

        Raises:
            SessionNotFoundException: If the template does not exist
            TemplateException: If the row is not a usable template
        """
        template = await self.repository.get_session(template_id)
        if template is None:
            raise SessionNotFoundException(template_id)
        return await self._materialize(template, options or InstanceGenerationOptions())

    async def _materialize(
        self, template: ScheduleSession, options: InstanceGenerationOptions
    ) -> list[ScheduleSession]:
        validate_template(template)

        today = self.today()
        end_date = resolve_end_date(options, today)
        dates = instance_dates(template.day_of_week, today, end_date)
        existing = await self.repository.get_existing_instance_dates(template, dates)
        instances = build_instances(template, dates, existing)

        if not instances:
            logger.debug("Template already materialized", template_id=template.id)
            return []

        created = await self.repository.insert_sessions(instances)
        track_instances_created(len(created))
        logger.info(
            "Instances created",
            template_id=template.id,
            count=len(created),
            end_date=end_date.isoformat(),
        )
        return created

    async def generate_for_all_templates(
        self, options: Optional[InstanceGenerationOptions] = None
    ) -> dict:
        """
        Materialize every scheduled template.

        Templates are read page by page and processed in concurrent batches.
        A failing template is recorded and does not stop the run.

        Returns:
            ``{"total", "created", "errors", "end_date"}``
        """
        options = options or InstanceGenerationOptions()
        end_date = resolve_end_date(options, self.today())
        started = time.time()
        total = 0
        created = 0
        errors: list[dict] = []

        with tracer.start_as_current_span("generate_instances_for_all_templates"):
            offset = 0
            while True:
                page = await self.repository.list_templates(offset, self.page_size)
                if not page:
                    break
                total += len(page)

                for i in range(0, len(page), self.batch_size):
                    batch = page[i:i + self.batch_size]
                    results = await asyncio.gather(
                        *(self._materialize(template, options) for template in batch),
                        return_exceptions=True,
                    )
                    for template, result in zip(batch, results):
                        if isinstance(result, SpeddyException):
                            errors.append({"template_id": template.id, "error": result.message})
                        elif isinstance(result, Exception):
                            logger.error(
                                "Instance generation failed",
                                template_id=template.id,
                                error=str(result),
                            )
                            errors.append({"template_id": template.id, "error": str(result)})
                        else:
                            created += len(result)

                if len(page) < self.page_size:
                    break
                offset += self.page_size

        track_instance_generation(time.time() - started)
        logger.info(
            "Instance generation finished",
            total=total,
            created=created,
            errors=len(errors),
            end_date=end_date.isoformat(),
        )
        return {"total": total, "created": created, "errors": errors, "end_date": end_date}
