"""
Recipe import entry point for the Kokbok recipe pipeline.

Orchestrates extraction, normalization and entity resolution for URL
imports, the AI fallback from page text, the save path and the read path
with step associations. Nothing crosses this boundary as an exception:
every outcome is an ImportResult or SaveResult.
"""

from typing import List, Optional, Tuple

from models import CanonicalRecipe, ImportResult, SaveResult, StepAssociation
from services.ai_service import AIService, get_ai_service
from services.association_service import associate
from services.database_service import DatabaseService
from services.errors import FetchError, GenerationError, InvalidSourceError, PersistenceError
from services.image_service import ImageService, get_image_service
from services.ingredient_service import IngredientService, get_ingredient_service
from services.parsing_service import ParsingService, get_parsing_service
from services.scraping_service import ScrapingService, get_scraping_service
from utils import Config, get_logger, log_operation

logger = get_logger(__name__)

NO_STRUCTURED_DATA_MESSAGE = "Ingen strukturerad receptdata hittades. Prova med AI för att tolka sidans innehåll."
FETCH_FAILED_MESSAGE = "Kunde inte hämta innehåll från sidan."
INVALID_URL_MESSAGE = "Ogiltig URL. Ange en adress som börjar med http:// eller https://."
UNEXPECTED_ERROR_MESSAGE = "Ett oväntat fel uppstod vid import. Försök igen."
AI_UNAVAILABLE_MESSAGE = "AI-tolkning är inte tillgänglig."


class ImportService:
    """
    Import entry point wiring the pipeline services together.

    All collaborators are passed in; the AI and image services are optional
    and their features are reported as unavailable when missing.
    """

    def __init__(self, config: Config, database_service: DatabaseService,
                 scraping_service: ScrapingService, parsing_service: ParsingService,
                 ingredient_service: IngredientService, ai_service: Optional[AIService] = None,
                 image_service: Optional[ImageService] = None):
        self.config = config
        self.db = database_service
        self.scraping = scraping_service
        self.parsing = parsing_service
        self.ingredients = ingredient_service
        self.ai = ai_service
        self.images = image_service

    def import_from_url(self, url: str, user_id: Optional[str] = None) -> ImportResult:
        """
        Import a recipe from a URL without saving it.

        Returns:
            ImportResult with the resolved recipe, warnings and low-confidence
            ingredient indices; on a page without a recipe, success=False with
            the captured page_text so the caller can offer AI import
        """
        with log_operation(logger, f"import {url}") as op:
            try:
                extraction = self.scraping.extract(url)
            except InvalidSourceError as e:
                op.warning(str(e))
                return ImportResult(success=False, source_url=url, error=INVALID_URL_MESSAGE)
            except FetchError as e:
                op.warning(str(e))
                return ImportResult(success=False, source_url=url, error=FETCH_FAILED_MESSAGE)

            if not extraction.success:
                error = NO_STRUCTURED_DATA_MESSAGE if extraction.page_text else FETCH_FAILED_MESSAGE
                return ImportResult(success=False, source_url=url, error=error,
                                    page_text=extraction.page_text)

            op.info(f"extracted via {extraction.strategy}")
            return self._process(url, extraction.page_text, user_id, recipe_data=extraction.recipe_data)

    def import_from_text(self, text: str, user_id: Optional[str] = None,
                         source_url: Optional[str] = None) -> ImportResult:
        """Structure free recipe text with the AI service, then resolve its ingredients"""
        if self.ai is None or not self.config.ai_enabled:
            return ImportResult(success=False, source_url=source_url, error=AI_UNAVAILABLE_MESSAGE,
                                page_text=text)

        with log_operation(logger, "import from text") as op:
            try:
                recipe = self.ai.parse_recipe_text(text)
            except GenerationError as e:
                op.warning(str(e))
                return ImportResult(success=False, source_url=source_url,
                                    error=f"AI-tolkningen misslyckades: {e}", page_text=text)

            recipe.source_url = source_url
            return self._process(source_url, text, user_id, recipe=recipe)

    def _process(self, source_url: Optional[str], page_text: Optional[str], user_id: Optional[str],
                 recipe_data: Optional[dict] = None,
                 recipe: Optional[CanonicalRecipe] = None) -> ImportResult:
        """
        Normalize (for raw extracted data) and resolve a recipe.

        This is the single failure boundary of both import paths: any error
        is logged with its traceback and returned as an ImportResult.
        """
        try:
            warnings, parse_low_confidence = [], []
            if recipe_data is not None:
                normalized = self.parsing.normalize(recipe_data, source_url=source_url)
                recipe = normalized.recipe
                warnings, parse_low_confidence = normalized.warnings, normalized.low_confidence_indices
            resolved, resolution = self.ingredients.resolve_recipe(recipe, user_id)
        except Exception:
            logger.exception(f"Failed to process recipe from {source_url or 'text'}")
            return ImportResult(success=False, source_url=source_url, error=UNEXPECTED_ERROR_MESSAGE,
                                page_text=page_text)

        return ImportResult(
            success=True,
            source_url=source_url,
            data=resolved,
            warnings=warnings,
            low_confidence_indices=sorted(set(parse_low_confidence) | set(resolution.low_confidence_indices)),
            page_text=page_text
        )

    def import_from_url_with_ai(self, url: str, user_id: Optional[str] = None) -> ImportResult:
        """AI import of a page that has no structured recipe"""
        try:
            text = self.scraping.fetch_page_text(url)
        except InvalidSourceError:
            return ImportResult(success=False, source_url=url, error=INVALID_URL_MESSAGE)
        except FetchError as e:
            logger.warning(f"Could not fetch page text for AI import of {url}: {e}")
            return ImportResult(success=False, source_url=url, error=FETCH_FAILED_MESSAGE)
        return self.import_from_text(text, user_id, source_url=url)

    def save_imported_recipe(self, recipe: CanonicalRecipe, owner: Optional[str] = None) -> SaveResult:
        """
        Persist a recipe; the image is downloaded only once the save succeeded.
        """
        try:
            recipe_id = self.db.save_recipe(
                recipe.get_fields(), recipe.flatten_ingredients(), recipe.flatten_instructions(), owner
            )
        except PersistenceError as e:
            return SaveResult(success=False, error=e.user_message, error_code=e.code.value)

        image = None
        if recipe.image_url and self.images is not None:
            image = self.images.fetch_image(recipe.image_url)
            if image.success:
                self.db.set_recipe_image(recipe_id, image.image_id)
            else:
                logger.warning(f"Recipe {recipe_id} saved without image: {image.error}")

        return SaveResult(success=True, recipe_id=recipe_id, image=image)

    def get_recipe_with_associations(self, recipe_id: int) -> Tuple[Optional[CanonicalRecipe], List[StepAssociation]]:
        """Load a recipe and compute its step associations fresh"""
        recipe = self.db.get_recipe(recipe_id)
        if recipe is None:
            return None, []
        return recipe, associate(recipe.ingredient_groups, recipe.instruction_groups)


def get_import_service(config: Config, database_service: DatabaseService) -> ImportService:
    """Factory function wiring the default pipeline services around one database"""
    return ImportService(
        config,
        database_service,
        get_scraping_service(config),
        get_parsing_service(config),
        get_ingredient_service(database_service, config),
        ai_service=get_ai_service(config) if config.ai_enabled else None,
        image_service=get_image_service(config)
    )
