"""Training example harvesting from completed leads.

Each completed lead can carry the staff-verified services for every item
it contained. Those become labelled examples (photo -> correct services)
for improving the vision model's suggestions.

Recording is fire-and-forget: a failure here is logged and never undoes
the completion of the lead.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from quotedesk_core.domain.models import (
    QueueLead,
    TrainingExample,
    TrainingStatus,
    utcnow,
)
from quotedesk_core.domain.schemas.analysis import ProductTrainingData

logger = logging.getLogger(__name__)


DEFAULT_IMAGE_SOURCE = "zoko"
DEFAULT_VERIFIER = "Staff"


class TrainingSink(ABC):
    """Destination for verified training data."""

    @abstractmethod
    def record(
        self,
        lead: QueueLead,
        products: Sequence[ProductTrainingData],
        verified_by: Optional[str] = None,
    ) -> int:
        """Record the products of a completed lead.

        Returns:
            Number of examples recorded.
        """
        ...


class DatabaseTrainingSink(TrainingSink):
    """Writes one TrainingExample row per image URL of each usable product."""

    def __init__(self, db: Session, image_source: str = DEFAULT_IMAGE_SOURCE):
        self.db = db
        self.image_source = image_source

    def build_examples(
        self,
        lead: QueueLead,
        products: Sequence[ProductTrainingData],
        verified_by: Optional[str] = None,
    ) -> list[TrainingExample]:
        now = utcnow()
        examples: list[TrainingExample] = []

        for product in products:
            if not product.is_usable:
                continue

            analysis = product.analysis
            services = [
                {"service_name": s.service_name, "service_id": s.service_id}
                for s in product.services
            ]
            for image_url in product.image_urls:
                examples.append(
                    TrainingExample(
                        lead_id=lead.id,
                        image_url=image_url,
                        image_source=self.image_source,
                        customer_name=lead.customer_name,
                        ai_category=(analysis.category or None) if analysis else None,
                        ai_sub_type=(analysis.sub_type or None) if analysis else None,
                        ai_material=(analysis.material or None) if analysis else None,
                        ai_condition=(analysis.condition or None) if analysis else None,
                        ai_issues=(
                            [i.model_dump() for i in analysis.issues] if analysis else []
                        ),
                        correct_services=services,
                        status=TrainingStatus.VERIFIED,
                        verified_by=verified_by or DEFAULT_VERIFIER,
                        verified_at=now,
                        notes=f"From lead {lead.id}",
                    )
                )

        return examples

    def record(
        self,
        lead: QueueLead,
        products: Sequence[ProductTrainingData],
        verified_by: Optional[str] = None,
    ) -> int:
        examples = self.build_examples(lead, products, verified_by)
        if not examples:
            return 0

        try:
            with self.db.begin_nested():
                self.db.add_all(examples)
        except Exception as e:
            logger.error("Failed to save training examples for lead %s: %s", lead.id, e)
            return 0

        logger.info("Saved %d training examples from lead %s", len(examples), lead.id)
        return len(examples)
