"""
Pass regeneration pipeline.

Re-reads loyalty state and rendering configuration, settles the pass
images in a template workspace, renders pass.json and hands everything
to the bundle builder for signing.
"""

import logging

from starlette.concurrency import run_in_threadpool

from app.core.errors import NotFoundError, ProviderConfigurationError
from app.domain.models import GeneratedPass, PassContext, PassIdentity
from app.repositories.loyalty_card import LoyaltyCardRepository
from app.repositories.passkit_config import PasskitConfigRepository
from app.repositories.wallet_pass import WalletPassRepository, issue_token
from app.services.assets import AssetFetcher, TemplateWorkspace, Workspace, generate_default_icon
from app.services.pass_bundle import PassBundleBuilder
from app.services.pass_fields import DEFAULT_BACKGROUND, build_pass_json, parse_color

logger = logging.getLogger(__name__)


def load_pass_context(serial_number: str, identity: PassIdentity | None = None) -> PassContext:
    """Resolve every record a pass build needs.

    Raises:
        NotFoundError: Naming the lookup that came back empty.
    """
    if identity is None:
        identity = WalletPassRepository.get_by_serial(serial_number)
        if identity is None:
            raise NotFoundError("Pass not found")

    card = LoyaltyCardRepository.get_snapshot(serial_number)
    if card is None:
        raise NotFoundError("Loyalty card not found")

    customer = LoyaltyCardRepository.get_customer(card.customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")

    config = PasskitConfigRepository.get_active(customer.get("business_id"))
    if config is None:
        raise NotFoundError("Pass configuration not found")

    return PassContext(identity=identity, card=card, customer=customer, config=config)


def ensure_pass_identity(card_number: str, pass_type_id: str) -> PassIdentity:
    """Get the pass identity of a loyalty card, creating it on first issuance.

    The card number doubles as the pass serial number.

    Raises:
        NotFoundError: If no loyalty card has this number.
    """
    identity = WalletPassRepository.get_by_serial(card_number)
    if identity is not None:
        return identity

    if LoyaltyCardRepository.get_snapshot(card_number) is None:
        raise NotFoundError("Loyalty card not found")

    identity = WalletPassRepository.create(card_number, pass_type_id, issue_token())
    logger.info(f"Issued pass identity for card {card_number[:8]}...")
    return identity


def settle_files(workspace: Workspace, images: dict[str, bytes], apple_config: dict) -> dict[str, bytes]:
    """Write downloaded images, fill in a default icon and read the bundle back.

    Blocking (disk and Pillow), so callers run it in the threadpool.
    """
    for name, data in images.items():
        workspace.write_image(name, data)

    if not workspace.has_file("icon.png"):
        background = parse_color(apple_config.get("background_color"), DEFAULT_BACKGROUND)
        for filename, data in generate_default_icon(background).items():
            workspace.write(filename, data)

    return workspace.snapshot()


class PassRegenerator:
    def __init__(
        self,
        bundle_builder: PassBundleBuilder,
        asset_fetcher: AssetFetcher,
        workspace: TemplateWorkspace,
        team_id: str,
        web_service_url: str,
        organization_name: str = "Loyalty Card",
        pass_type_id: str = "",
    ):
        self.bundle_builder = bundle_builder
        self.asset_fetcher = asset_fetcher
        self.workspace = workspace
        self.team_id = team_id
        self.web_service_url = web_service_url
        self.organization_name = organization_name
        self.pass_type_id = pass_type_id

    async def load_context(self, serial_number: str, identity: PassIdentity | None = None) -> PassContext:
        return await run_in_threadpool(load_pass_context, serial_number, identity)

    async def _collect_files(self, context: PassContext) -> dict[str, bytes]:
        """Settle the bundle images and return every bundle file in memory."""
        apple_config = context.config.get("apple_config") or {}
        serial_number = context.identity.serial_number

        async with self.workspace.open(serial_number) as workspace:
            images = await self.asset_fetcher.fetch_images(apple_config)
            return await run_in_threadpool(settle_files, workspace, images, apple_config)

    async def build(self, context: PassContext) -> GeneratedPass:
        """Produce a signed bundle for an already resolved context."""
        files = await self._collect_files(context)

        pass_json = build_pass_json(
            context,
            team_id=self.team_id,
            web_service_url=self.web_service_url,
            default_organization_name=self.organization_name,
        )

        content = await run_in_threadpool(self.bundle_builder.build, pass_json, files)
        logger.info(
            f"Regenerated pass {context.identity.serial_number[:8]}... "
            f"({len(files)} files, {len(content)} bytes)"
        )
        return GeneratedPass(content=content, last_modified=context.last_modified)

    async def regenerate(self, serial_number: str, identity: PassIdentity | None = None) -> GeneratedPass:
        context = await self.load_context(serial_number, identity)
        return await self.build(context)

    async def issue(self, card_number: str) -> GeneratedPass:
        """Build the first (or current) pass for a loyalty card.

        Raises:
            ProviderConfigurationError: If no pass type identifier is configured.
            NotFoundError: If the card or its rendering records are missing.
        """
        if not self.pass_type_id:
            raise ProviderConfigurationError("Pass type identifier not configured")

        identity = await run_in_threadpool(ensure_pass_identity, card_number, self.pass_type_id)
        return await self.regenerate(card_number, identity)


def create_pass_regenerator(workspace: TemplateWorkspace) -> PassRegenerator:
    """Factory function to create PassRegenerator from settings."""
    from app.core.config import settings, get_public_base_url
    from app.services.pass_bundle import create_pass_bundle_builder

    return PassRegenerator(
        bundle_builder=create_pass_bundle_builder(),
        asset_fetcher=AssetFetcher(timeout=settings.asset_download_timeout),
        workspace=workspace,
        team_id=settings.apple_team_id,
        web_service_url=get_public_base_url(),
        organization_name=settings.organization_name,
        pass_type_id=settings.apple_pass_type_id,
    )
