# app/services/dispute_letter_service.py
"""
Dispute letter generation. Letters are written by the model from one
dispute item of an analysis and stored in dispute_letters.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger
from app.models.domain.analysis_domain import DisputeItem
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.dispute_repository import DisputeLetterRepository
from app.services.analysis_pipeline import AnalysisNotFoundError
from app.services.openai_service import CreditAnalysisClient, ErrorKind, LLMFailure

logger = get_logger(__name__)


class DisputeLetterError(Exception):
    """Raised when the letter could not be generated."""

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.kind = kind


@dataclass(slots=True)
class SenderInfo:
    name: str | None = None
    address: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(slots=True)
class GeneratedLetter:
    content: str
    letter_id: str | None
    stored: bool


def build_letter_prompt(dispute: DisputeItem, sender: SenderInfo, today: str) -> str:
    return f"""Generate a formal dispute letter to send to the {dispute.bureau or "credit"} credit bureau.
The letter disputes the following account:

Account Name: {dispute.account_name or "Not provided"}
Account Number: {dispute.account_number or "Not provided"}
Issue Type: {dispute.issue_type or "Inaccurate information"}
Recommended Action: {dispute.recommended_action or "Investigate and correct"}

The letter is from:
Name: {sender.name or "[Your Name]"}
Address: {sender.address or "[Your Address]"}
Email: {sender.email or "[Your Email]"}
Phone: {sender.phone or "[Your Phone]"}

The letter should:
1. Be dated {today}
2. Include the consumer's contact information
3. Include the credit bureau's mailing address
4. Reference the specific account being disputed
5. State the reason for the dispute clearly
6. Request that the item be investigated and removed or corrected
7. Cite the consumer's rights under the Fair Credit Reporting Act (FCRA)
8. Close with a signature line for the consumer

Return the letter as plain text that can be copied and pasted.
"""


class DisputeLetterService:
    def __init__(
        self,
        llm_client: CreditAnalysisClient,
        *,
        analyses=AnalysisRepository,
        letters=DisputeLetterRepository,
    ):
        self.llm_client = llm_client
        self.analyses = analyses
        self.letters = letters

    async def generate_letter(
        self,
        user_id: str,
        analysis_id: str,
        dispute: DisputeItem,
        sender: SenderInfo | None = None,
    ) -> GeneratedLetter:
        """
        Generate and store a dispute letter.

        Storage failures are logged; the generated letter is still returned.

        Raises:
            AnalysisNotFoundError: analysis missing or owned by someone else
            DisputeLetterError: the model call failed
        """
        analysis = await self.analyses.get_for_user(analysis_id, user_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

        prompt = build_letter_prompt(
            dispute, sender or SenderInfo(), datetime.now(UTC).strftime("%B %d, %Y")
        )

        outcome = await self.llm_client.generate_text(
            prompt, user_id, temperature=0.7, max_tokens=1500
        )
        if isinstance(outcome, LLMFailure):
            raise DisputeLetterError(f"Failed to generate letter: {outcome.message}", outcome.kind)

        letter_id = None
        try:
            stored = await self.letters.create(
                user_id, analysis_id, dispute.bureau, dispute.account_name, outcome.raw_output
            )
            letter_id = stored.id
        except Exception as e:
            logger.error(
                "Failed to store dispute letter",
                user_id=user_id,
                analysis_id=analysis_id,
                error=str(e),
            )

        logger.info(
            "Dispute letter generated",
            user_id=user_id,
            analysis_id=analysis_id,
            bureau=dispute.bureau,
            stored=letter_id is not None,
        )
        return GeneratedLetter(
            content=outcome.raw_output, letter_id=letter_id, stored=letter_id is not None
        )
