"""
Thin wrapper around the Gemini / Imagen models.

Three remote operations back the wizard: predicting candidate diseases for a
crop, drawing what each disease looks like, and writing a treatment plan.
"""

import logging
from typing import List, Optional

from google import genai
from google.genai import types
from pydantic import ValidationError as SchemaValidationError

from errors import PredictionError, SolutionError, VisualizationError
from schemas import DiseaseInfo, PlantImage, PredictionResponse, SolutionInfo, to_data_uri

logger = logging.getLogger(__name__)

MIN_CANDIDATES = 2
MAX_CANDIDATES = 4

# === Response schemas ===
PREDICTION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "diseases": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "name": types.Schema(
                        type=types.Type.STRING,
                        description="The common name of the plant disease.",
                    ),
                    "description": types.Schema(
                        type=types.Type.STRING,
                        description="A brief, one-sentence description of the disease's appearance.",
                    ),
                },
                required=["name", "description"],
            ),
        )
    },
    required=["diseases"],
)

SOLUTION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "immediateActions": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="Urgent first steps to contain the problem (e.g., isolate plant, remove affected leaves).",
        ),
        "recommendedTreatments": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="Specific organic or conventional treatments to apply.",
        ),
        "longTermPrevention": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="Strategies to prevent the disease from recurring in the future (e.g., crop rotation, soil health).",
        ),
    },
    required=["immediateActions", "recommendedTreatments", "longTermPrevention"],
)


# === Prompts ===
def build_prediction_prompt(crop, days_planted):
    return (
        f"You are an expert agricultural pathologist. A farmer planted {crop} about {days_planted} days ago. "
        "Based on the crop and its approximate growth stage, predict 2 to 4 of the most common potential "
        "diseases it might face. For each disease, provide a short, one-sentence description of its key "
        "visual symptom."
    )


def build_edit_prompt(disease_name):
    return (
        "This is a photo of a farmer's plant. Edit this image to show clear, distinct, and realistic visual "
        f'symptoms of a plant disease called "{disease_name}". The edit should be seamless and focus on the '
        "parts of the plant typically affected (leaves, stem, etc.). Keep the original composition and framing. "
        "Make the symptoms obvious and easy for a farmer to identify on their own plant. "
        "Do not add any text or labels to the image."
    )


def build_synthesis_prompt(crop, disease_name):
    return (
        f"A photorealistic, high-resolution, close-up image of a {crop} plant clearly showing the symptoms of "
        f"{disease_name}. The image must focus on the affected parts of the plant (e.g., leaves, stem, fruit) "
        "with an accurate and detailed visual representation of the disease. The background should be a "
        "natural, slightly blurred farm or garden environment. The image should look like a real photograph. "
        "Do not add any text or labels."
    )


def build_solution_prompt(crop, disease_name):
    return (
        "You are an expert agricultural advisor. A farmer needs a simple, clear, and actionable treatment plan "
        f"for their {crop} plants, which are showing symptoms of {disease_name}. "
        "Provide a step-by-step guide with practical advice."
    )


def _unique_by_name(diseases: List[DiseaseInfo]) -> List[DiseaseInfo]:
    seen = set()
    unique = []
    for disease in diseases:
        if disease.name in seen:
            continue
        seen.add(disease.name)
        unique.append(disease)
    return unique


class AIGateway:
    """Gemini-backed prediction, visualization and treatment-plan service."""

    def __init__(self, settings, client=None):
        self.settings = settings
        if client is None:
            client = genai.Client(
                api_key=settings.gemini_api_key,
                http_options=types.HttpOptions(timeout=int(settings.gemini_timeout * 1000)),
            )
        self.client = client

    def _generate_json(self, prompt, schema):
        response = self.client.models.generate_content(
            model=self.settings.text_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        text = (response.text or "").strip()
        if not text:
            raise ValueError("Empty response from model")
        return text

    def predict_diseases(self, crop: str, days_planted: int) -> List[DiseaseInfo]:
        """Return 2-4 plausible diseases for `crop` at `days_planted` days of growth."""
        if days_planted < 0:
            raise PredictionError("Days since planting cannot be negative")

        logger.info(f"🔄 Predicting diseases for {crop} planted {days_planted} days ago")
        try:
            text = self._generate_json(build_prediction_prompt(crop, days_planted), PREDICTION_SCHEMA)
            parsed = PredictionResponse.model_validate_json(text)
        except SchemaValidationError as e:
            raise PredictionError(f"Unexpected response format: {e.error_count()} validation error(s)") from e
        except Exception as e:
            raise PredictionError(str(e)) from e

        diseases = _unique_by_name(parsed.diseases)[:MAX_CANDIDATES]
        if not diseases:
            raise PredictionError("No diseases were returned by the model.")
        if len(diseases) < MIN_CANDIDATES:
            logger.warning(f"⚠️ Model returned only {len(diseases)} distinct disease(s) for {crop}")

        # fresh entries: images are attached later, one by one
        diseases = [DiseaseInfo(name=d.name, description=d.description) for d in diseases]
        logger.info(f"✅ Predicted {len(diseases)} diseases: {', '.join(d.name for d in diseases)}")
        return diseases

    def visualize_disease(self, crop: str, disease_name: str, plant_image: Optional[PlantImage] = None) -> str:
        """
        Produce an image of `disease_name` on `crop` and return it as a data URI.

        With a plant photo the photo itself is edited to show the symptoms;
        without one a new photorealistic image is synthesized.
        """
        try:
            if plant_image is not None:
                return self._edit_plant_image(disease_name, plant_image)
            return self._synthesize_image(crop, disease_name)
        except VisualizationError:
            raise
        except Exception as e:
            raise VisualizationError(str(e)) from e

    def _edit_plant_image(self, disease_name, plant_image):
        response = self.client.models.generate_content(
            model=self.settings.image_edit_model,
            contents=[
                types.Part.from_bytes(data=plant_image.data, mime_type=plant_image.mime_type),
                build_edit_prompt(disease_name),
            ],
            config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
        )
        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data is not None and part.inline_data.data:
                    return to_data_uri(part.inline_data.data, part.inline_data.mime_type or "image/png")
        raise VisualizationError("Image editing failed: No image was returned by the model.")

    def _synthesize_image(self, crop, disease_name):
        response = self.client.models.generate_images(
            model=self.settings.image_model,
            prompt=build_synthesis_prompt(crop, disease_name),
            config=types.GenerateImagesConfig(
                number_of_images=1,
                output_mime_type="image/jpeg",
                aspect_ratio="1:1",
            ),
        )
        images = response.generated_images or []
        if images and images[0].image is not None and images[0].image.image_bytes:
            return to_data_uri(images[0].image.image_bytes, "image/jpeg")
        raise VisualizationError("Image generation failed: No image was returned by the model.")

    def get_solution(self, crop: str, disease_name: str) -> SolutionInfo:
        logger.info(f"🔄 Generating treatment plan for {disease_name} on {crop}")
        try:
            text = self._generate_json(build_solution_prompt(crop, disease_name), SOLUTION_SCHEMA)
            solution = SolutionInfo.model_validate_json(text)
        except SchemaValidationError as e:
            raise SolutionError(f"Unexpected response format: {e.error_count()} validation error(s)") from e
        except Exception as e:
            raise SolutionError(str(e)) from e
        logger.info(f"✅ Treatment plan ready for {disease_name}")
        return solution
