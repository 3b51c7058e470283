"""
Post-demo induction quiz questions by language.
"""
from typing import Dict, List

QUIZ_QUESTIONS: Dict[str, List[dict]] = {
    "en": [
        {
            "id": "qr_purpose",
            "question": "What is the main purpose of QR codes on site documents?",
            "options": [
                "To make documents look modern",
                "To ensure you always use current, approved versions",
                "To track who printed the document",
                "To save paper",
            ],
            "correct_answer": 1,
            "explanation": "QR codes ensure you never work from outdated documents, preventing accidents caused by superseded information.",
            "difficulty": "easy",
        },
        {
            "id": "superseded_action",
            "question": 'If a QR scan shows "Superseded", what should you do?',
            "options": [
                "Use the document anyway if it looks recent",
                "Ask your supervisor next week",
                "Get the latest version immediately",
                "Cross out the old information",
            ],
            "correct_answer": 2,
            "explanation": "Never use superseded documents. Always get the current version to ensure safety and compliance.",
            "difficulty": "medium",
        },
        {
            "id": "no_qr_code",
            "question": "What should you do if you find a printed document without a QR code?",
            "options": [
                "Use it carefully",
                "Bin it and get a proper version",
                "Add your own QR code",
                "Use it only for small jobs",
            ],
            "correct_answer": 1,
            "explanation": "Documents without QR codes cannot be verified for currency. They should be discarded and replaced with verified versions.",
            "difficulty": "medium",
        },
        {
            "id": "signature_vault",
            "question": "Where can you check which site documents you have already signed?",
            "options": [
                "On the canteen notice board",
                "In your Signature Vault",
                "By asking the supplier",
                "Nowhere, signatures are not kept",
            ],
            "correct_answer": 1,
            "explanation": "Your Signature Vault lists every document you have signed and flags any that have been superseded.",
            "difficulty": "hard",
        },
    ],
    "es": [
        {
            "id": "qr_purpose",
            "question": "¿Cuál es el propósito principal de los códigos QR en los documentos del sitio?",
            "options": [
                "Hacer que los documentos se vean modernos",
                "Asegurar que siempre uses versiones actuales y aprobadas",
                "Rastrear quién imprimió el documento",
                "Ahorrar papel",
            ],
            "correct_answer": 1,
            "explanation": "Los códigos QR aseguran que nunca trabajes con documentos obsoletos, previniendo accidentes causados por información reemplazada.",
            "difficulty": "easy",
        },
        {
            "id": "superseded_action",
            "question": 'Si un escaneo QR muestra "Reemplazado", ¿qué debes hacer?',
            "options": [
                "Usar el documento de todos modos si parece reciente",
                "Preguntarle a tu supervisor la próxima semana",
                "Obtener la versión más reciente inmediatamente",
                "Tachar la información vieja",
            ],
            "correct_answer": 2,
            "explanation": "Nunca uses documentos reemplazados. Siempre obtén la versión actual para asegurar seguridad y cumplimiento.",
            "difficulty": "medium",
        },
    ],
    "pl": [
        {
            "id": "qr_purpose",
            "question": "Jaki jest główny cel kodów QR na dokumentach budowy?",
            "options": [
                "Sprawić, żeby dokumenty wyglądały nowocześnie",
                "Zapewnić używanie aktualnych, zatwierdzonych wersji",
                "Śledzić kto wydrukował dokument",
                "Oszczędzać papier",
            ],
            "correct_answer": 1,
            "explanation": "Kody QR zapewniają, że nigdy nie pracujesz z przestarzałymi dokumentami, zapobiegając wypadkom spowodowanym zastąpionymi informacjami.",
            "difficulty": "easy",
        },
    ],
    "ro": [
        {
            "id": "qr_purpose",
            "question": "Care este scopul principal al codurilor QR pe documentele de șantier?",
            "options": [
                "Să facă documentele să arate moderne",
                "Să asigure că folosești întotdeauna versiuni curente, aprobate",
                "Să urmărească cine a imprimat documentul",
                "Să economisească hârtia",
            ],
            "correct_answer": 1,
            "explanation": "Codurile QR asigură că nu lucrezi niciodată cu documente învechite, prevenind accidentele cauzate de informații înlocuite.",
            "difficulty": "easy",
        },
    ],
}

FEEDBACK_TEMPLATES: Dict[str, List[str]] = {
    "excellent": [
        "Outstanding! You have excellent understanding of QR code safety protocols.",
        "Perfect score! You're ready to lead by example on site.",
        "Exceptional performance! Your commitment to safety is evident.",
    ],
    "good": [
        "Great job! You understand the key safety concepts well.",
        "Well done! Minor areas for improvement, but solid understanding overall.",
        "Good performance! You're ready to work safely with QR documents.",
    ],
    "needs_improvement": [
        "You're getting there! Review the key concepts and retake when ready.",
        "Some understanding gaps identified. Focus on document verification procedures.",
        "Additional training recommended before working with critical documents.",
    ],
    "requires_retry": [
        "Please review the training materials and retake the quiz.",
        "Significant knowledge gaps identified. Additional support recommended.",
        "Safety requires 100% understanding. Please repeat the training.",
    ],
}


def questions_for(language: str) -> List[dict]:
    """Questions in ``language``, falling back to English."""
    return QUIZ_QUESTIONS.get(language) or QUIZ_QUESTIONS["en"]


def public_questions(language: str) -> List[dict]:
    """Questions without the answer key."""
    return [
        {"id": q["id"], "question": q["question"], "options": q["options"], "difficulty": q["difficulty"]}
        for q in questions_for(language)
    ]
