"""Answering collaborator backed by Gemini.

``answer(query, context)`` never raises: an unconfigured model returns the
offline message and a failed generation returns the apology message.
"""

import logging

import google.generativeai as genai
from sqlalchemy.orm import Session, joinedload

from backend.core import config
from backend.models.doctor import Doctor

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = 'I am currently offline or not configured correctly. Please contact support.'
APOLOGY_MESSAGE = "I'm having trouble connecting right now. Please try again later."

SYSTEM_INSTRUCTION = """You are a helpful AI assistant for a hospital management system called "MediCare+".
Your role is to assist patients in finding doctors, checking availability, and understanding hospital services.

Use the provided "Doctor and Specialization Data" AND "USER SPECIFIC CONTEXT" to answer user queries.

If a user asks how to book an appointment, guide them: "To book an appointment, please navigate to the 'Doctors' page, select your preferred doctor, and click on their profile to view available slots."

Specific Guidance for User Data:
- If asked about "my appointments", check the "UPCOMING APPOINTMENTS" section.
- If asked about "medications", "prescriptions", or "diagnosis", check the "RECENT MEDICAL REPORTS" section.
- If the user asks "what is my prescription?" and has multiple reports, list the medications from the most recent one.

Rules:
1. Answer strictly based on the provided context.
2. Be polite, professional, and concise.
3. Do NOT make up information.
4. Do NOT use markdown formatting (no bold/italic). Keep the text plain.
5. If listing doctors, list them clearly with their specialization.
"""


def describe_doctor(doctor: Doctor) -> str:
    specialization = doctor.specialization.name if doctor.specialization else 'General'
    availability = '; '.join(
        f"{entry['day']} ({', '.join(entry.get('slots') or [])})"
        for entry in doctor.availability or []
    ) or 'not published'
    return f'Dr. {doctor.name} (ID: {doctor.id}) is a {specialization} specialist. Available: {availability}.'


def load_doctor_directory(db: Session) -> str:
    doctors = db.query(Doctor).options(joinedload(Doctor.specialization)).order_by(Doctor.name.asc()).all()
    return '\n'.join(describe_doctor(doctor) for doctor in doctors)


def build_prompt(doctor_directory: str, user_context: str, query: str) -> str:
    return '\n'.join([
        SYSTEM_INSTRUCTION,
        'Here is the complete list of available doctors and their details:',
        '---',
        doctor_directory or 'No doctors are listed yet.',
        '---',
        '',
        user_context,
        '',
        f'User Question: {query}',
    ])


class GeminiAnswerer:
    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        fallback_model_name: str | None = None,
    ) -> None:
        self.api_key = config.GEMINI_API_KEY if api_key is None else api_key
        self.model_name = model_name or config.GEMINI_MODEL
        self.fallback_model_name = fallback_model_name or config.GEMINI_FALLBACK_MODEL
        self.model = None
        self.doctor_directory = ''

    @property
    def available(self) -> bool:
        return self.model is not None

    def start(self) -> None:
        if not self.api_key:
            logger.warning('GEMINI_API_KEY not set. The assistant will answer with the offline message.')
            return

        try:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model_name)
            try:
                model.generate_content('test')
                logger.info("Model '%s' is valid and working.", self.model_name)
            except Exception:
                logger.warning(
                    "Model '%s' failed its health check. Falling back to '%s'.",
                    self.model_name,
                    self.fallback_model_name,
                    exc_info=True,
                )
                model = genai.GenerativeModel(self.fallback_model_name)
            self.model = model
        except Exception:
            logger.exception('Assistant initialization failed.')
            self.model = None

    def refresh_directory(self, db: Session) -> None:
        try:
            self.doctor_directory = load_doctor_directory(db)
        except Exception:
            logger.exception('Could not load the doctor directory for the assistant.')
            return
        logger.info('Assistant doctor directory loaded (%d chars).', len(self.doctor_directory))

    def answer(self, query: str, context: str) -> str:
        if self.model is None:
            return OFFLINE_MESSAGE

        try:
            response = self.model.generate_content(build_prompt(self.doctor_directory, context, query))
            return response.text.strip()
        except Exception:
            logger.exception('Assistant generation failed.')
            return APOLOGY_MESSAGE
