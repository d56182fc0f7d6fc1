"""This is the engine file for the AgriAid wizard.
It holds the three-step state machine, the shared session context and the
fetch pipelines each step runs when it is entered."""

import io
import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

from PIL import Image, UnidentifiedImageError

from errors import InvalidTransitionError, PredictionError, SolutionError, ValidationError, VisualizationError
from schemas import DiseaseInfo, PlantImage, SolutionInfo, UserData

logger = logging.getLogger(__name__)


class AppState(Enum):
    USER_INPUT = 1
    DISEASE_SELECTION = 2
    SOLUTION = 3


# (event, current state) -> next state. Reset is accepted from anywhere.
TRANSITIONS = {
    ("start", AppState.USER_INPUT): AppState.DISEASE_SELECTION,
    ("select", AppState.DISEASE_SELECTION): AppState.SOLUTION,
}


def load_plant_image(data: bytes, mime_type: Optional[str] = None) -> PlantImage:
    """Check an uploaded photo with Pillow and wrap it as a PlantImage."""
    if mime_type and not mime_type.startswith("image/"):
        raise ValidationError("Please upload a valid image file (e.g., JPEG, PNG).")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(data)) as image:
                image_format = image.format
                image.verify()
    except UnidentifiedImageError:
        raise ValidationError("Please upload a valid image file (e.g., JPEG, PNG).")
    except (Image.DecompressionBombError, Image.DecompressionBombWarning):
        logger.warning(f"⚠️ Rejected oversized image upload ({len(data)} bytes)")
        raise ValidationError("Failed to read the image file.")
    except (OSError, ValueError, SyntaxError):
        raise ValidationError("Failed to read the image file.")
    if not mime_type:
        mime_type = Image.MIME.get(image_format, "image/jpeg")
    return PlantImage(data=data, mime_type=mime_type)


def _parse_days(value) -> int:
    if isinstance(value, bool):
        raise ValueError("bool is not a day count")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("fractional day count")
        return int(value)
    return int(str(value).strip())


def validate_user_input(crop, days_planted, plant_image: Optional[PlantImage] = None) -> UserData:
    """Turn raw form values into UserData, or raise ValidationError."""
    crop = (crop or "").strip()
    if not crop or days_planted is None or str(days_planted).strip() == "":
        raise ValidationError("Please fill in crop and planting day information.")
    try:
        days = _parse_days(days_planted)
    except ValueError:
        raise ValidationError("Days since planting must be a whole number.")
    if days <= 0:
        raise ValidationError("Days since planting must be at least 1.")
    return UserData(crop=crop, days_planted=days, plant_image=plant_image)


class WizardSession:
    """
    Shared context for one wizard run.

    Owns the user data, the disease list, the selection and the solution, plus
    the loading / error flags the step views render. All state changes go
    through `start`, `select` and `reset`.
    """

    def __init__(self):
        self.state = AppState.USER_INPUT
        self.user_data: Optional[UserData] = None
        self.diseases: List[DiseaseInfo] = []
        self.selected_disease: Optional[DiseaseInfo] = None
        self.solution: Optional[SolutionInfo] = None
        self.is_loading = False
        self.loading_message = ""
        self.error: Optional[str] = None
        self._diseases_requested = False
        self._solution_requested = False
        self._reset_hooks: List[Callable[[], None]] = []

    def _transition(self, event):
        next_state = TRANSITIONS.get((event, self.state))
        if next_state is None:
            raise InvalidTransitionError(f"Cannot {event} from {self.state.name}")
        self.state = next_state
        self.error = None
        logger.info(f"➡️ Wizard moved to {next_state.name}")

    def start(self, crop, days_planted, plant_image: Optional[PlantImage] = None) -> UserData:
        if ("start", self.state) not in TRANSITIONS:
            raise InvalidTransitionError(f"Cannot start from {self.state.name}")
        try:
            user_data = validate_user_input(crop, days_planted, plant_image)
        except ValidationError as e:
            self.error = str(e)
            raise
        self.user_data = user_data
        self._transition("start")
        return user_data

    def find_disease(self, name) -> Optional[DiseaseInfo]:
        for disease in self.diseases:
            if disease.name == name:
                return disease
        return None

    def select(self, disease) -> bool:
        """Pick a disease by entry or name. Entries still waiting on an image are ignored."""
        if ("select", self.state) not in TRANSITIONS:
            raise InvalidTransitionError(f"Cannot select from {self.state.name}")
        name = disease.name if isinstance(disease, DiseaseInfo) else disease
        entry = self.find_disease(name)
        if entry is None or not entry.is_selectable:
            return False
        self.selected_disease = entry
        self._transition("select")
        return True

    def on_reset(self, hook: Callable[[], None]):
        if hook not in self._reset_hooks:
            self._reset_hooks.append(hook)

    def reset(self):
        for hook in self._reset_hooks:
            hook()
        self.state = AppState.USER_INPUT
        self.user_data = None
        self.diseases = []
        self.selected_disease = None
        self.solution = None
        self.is_loading = False
        self.loading_message = ""
        self.error = None
        self._diseases_requested = False
        self._solution_requested = False
        logger.info("🔄 Wizard reset")

    def dismiss_error(self):
        self.error = None

    # --- fetch guards: each step fetches at most once per entry ---
    def needs_diseases(self) -> bool:
        return self.state is AppState.DISEASE_SELECTION and not self._diseases_requested and not self.diseases

    def needs_solution(self) -> bool:
        return self.state is AppState.SOLUTION and not self._solution_requested and self.solution is None

    def set_loading(self, message=""):
        self.is_loading = True
        self.loading_message = message

    def clear_loading(self):
        self.is_loading = False
        self.loading_message = ""


@dataclass
class VisualizationOutcome:
    index: int
    total: int
    disease: DiseaseInfo
    succeeded: bool
    error: Optional[str] = None


def fetch_diseases(
    session: WizardSession,
    gateway,
    on_progress: Optional[Callable[[WizardSession], None]] = None,
) -> Iterator[VisualizationOutcome]:
    """
    Predict candidate diseases, then visualize them one at a time.

    Yields after every visualize attempt so the caller can redraw the grid as
    images arrive. A failed image is logged and skipped; that candidate stays
    unselectable. `on_progress` is called whenever the loading message changes.
    """
    if not session.needs_diseases():
        return
    session._diseases_requested = True
    user_data = session.user_data
    session.error = None
    session.set_loading("Identifying potential diseases...")
    if on_progress:
        on_progress(session)
    try:
        try:
            candidates = gateway.predict_diseases(user_data.crop, user_data.days_planted)
        except PredictionError as e:
            logger.error(f"❌ Disease prediction failed: {e}")
            session.error = f"Failed to predict diseases: {e}"
            return
        session.diseases = [DiseaseInfo(name=d.name, description=d.description) for d in candidates]

        total = len(session.diseases)
        for index, disease in enumerate(list(session.diseases)):
            session.loading_message = f"Visualizing {disease.name} ({index + 1}/{total})..."
            if on_progress:
                on_progress(session)
            try:
                image_url = gateway.visualize_disease(user_data.crop, disease.name, user_data.plant_image)
            except VisualizationError as e:
                logger.warning(f"⚠️ Failed to generate image for {disease.name}: {e}")
                yield VisualizationOutcome(index, total, disease, False, str(e))
                continue
            entry = session.find_disease(disease.name)
            if entry is None:
                # session was reset while this image was being drawn
                return
            entry.image_url = image_url
            yield VisualizationOutcome(index, total, entry, True)
    finally:
        session.clear_loading()


def fetch_solution(session: WizardSession, gateway) -> Optional[SolutionInfo]:
    if not session.needs_solution():
        return session.solution
    session._solution_requested = True
    disease = session.selected_disease
    session.error = None
    session.set_loading(f"Generating a treatment plan for {disease.name}...")
    try:
        session.solution = gateway.get_solution(session.user_data.crop, disease.name)
    except SolutionError as e:
        logger.error(f"❌ Treatment plan failed for {disease.name}: {e}")
        session.error = f"Failed to get a solution: {e}"
    finally:
        session.clear_loading()
    return session.solution


def read_aloud_text(disease: DiseaseInfo, solution: SolutionInfo) -> str:
    return (
        f"Action plan for {disease.name}. "
        f"Immediate Actions: {'. '.join(solution.immediate_actions)}. "
        f"Recommended Treatments: {'. '.join(solution.recommended_treatments)}. "
        f"Long-Term Prevention: {'. '.join(solution.long_term_prevention)}."
    )
