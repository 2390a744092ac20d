"""
Service de reconnaissance faciale

Deux modes explicites (FACE_ENGINE_MODE):
- full: détection HOG + descripteur 128 dimensions (face_recognition / dlib)
- degraded: simple détection de présence (Haar Cascade OpenCV), jamais suffisante
  pour une vérification obligatoire
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union
import base64
import enum
import math
import logging

import numpy as np
import cv2

from inclass.config import get_settings
from inclass.errors import FaceModelError, ValidationError

logger = logging.getLogger(__name__)


class FaceEngineMode(str, enum.Enum):
    """Capacité du moteur facial"""
    FULL = "full"
    DEGRADED = "degraded"


class ExtractionStatus(str, enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    INVALID_IMAGE = "invalid_image"
    UNAVAILABLE = "unavailable"


@dataclass
class DescriptorExtraction:
    """Résultat d'une extraction de descripteur"""
    status: ExtractionStatus
    descriptor: Optional[List[float]] = None
    face_count: int = 0


@dataclass
class FaceVerificationResult:
    """Résultat d'une vérification faciale"""
    matched: bool
    score: Optional[float]
    threshold: float
    mode: FaceEngineMode
    status: ExtractionStatus = ExtractionStatus.FOUND
    warning: Optional[str] = None


@dataclass
class LivenessResult:
    blink_detected: bool
    frames_analyzed: int
    ear_values: List[float] = field(default_factory=list)


Descriptor = Sequence[float]


def similarity(a: Descriptor, b: Descriptor) -> float:
    """
    Score de similarité entre deux descripteurs: 1 / (1 + distance euclidienne)
    Symétrique, dans ]0, 1], égal à 1.0 seulement pour des vecteurs identiques
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape:
        raise ValueError(f"Descripteurs de tailles différentes: {va.shape} vs {vb.shape}")
    distance = float(np.linalg.norm(va - vb))
    return 1.0 / (1.0 + distance)


def eye_aspect_ratio(eye: Sequence[Tuple[float, float]]) -> float:
    """
    Eye aspect ratio (Soukupová & Čech) sur les 6 points d'un œil
    EAR = (|p2-p6| + |p3-p5|) / (2 |p1-p4|)
    """
    if len(eye) != 6:
        raise ValueError("Un œil est décrit par 6 points")
    p = np.asarray(eye, dtype=np.float64)
    vertical = np.linalg.norm(p[1] - p[5]) + np.linalg.norm(p[2] - p[4])
    horizontal = np.linalg.norm(p[0] - p[3])
    if horizontal == 0:
        return 0.0
    return float(vertical / (2.0 * horizontal))


def detect_blink(ear_series: Sequence[float], threshold: float = 0.21, min_closed_frames: int = 1) -> bool:
    """
    Un clignement = œil ouvert, puis fermé pendant au moins min_closed_frames
    images consécutives, puis de nouveau ouvert
    """
    seen_open = False
    closed_run = 0
    for ear in ear_series:
        if ear < threshold:
            if seen_open:
                closed_run += 1
        else:
            if closed_run >= min_closed_frames:
                return True
            seen_open = True
            closed_run = 0
    return False


class FaceRecognitionService:
    """Service pour la reconnaissance faciale"""

    def __init__(self, mode: Optional[Union[FaceEngineMode, str]] = None):
        """
        Initialiser le service
        Args:
            mode: Mode du moteur. Par défaut, FACE_ENGINE_MODE.
        """
        self.mode = FaceEngineMode(mode or get_settings().FACE_ENGINE_MODE)
        # Détecteur de visage Haar Cascade (rapide), utilisé en mode dégradé
        self.face_cascade = cv2.CascadeClassifier(
            cv2.data.haarcascades + 'haarcascade_frontalface_default.xml'
        )
        if self.mode is FaceEngineMode.DEGRADED:
            logger.warning("Moteur facial en mode dégradé: détection de présence uniquement")

    def decode_base64_image(self, image_base64: str) -> Optional[np.ndarray]:
        """
        Décoder une image base64 en array numpy (RGB)
        """
        try:
            # Retirer le préfixe data:image si présent
            if ',' in image_base64:
                image_base64 = image_base64.split(',')[1]

            image_data = base64.b64decode(image_base64)
            nparr = np.frombuffer(image_data, np.uint8)
            image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

            # Convertir BGR (OpenCV) en RGB (face_recognition)
            if image is not None:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

            return image
        except Exception as e:
            logger.error(f"Erreur de décodage image: {e}")
            return None

    def _resize_image_for_speed(self, image: np.ndarray, max_width: int = 320) -> Tuple[np.ndarray, float]:
        """
        Redimensionner l'image pour accélérer le traitement
        Returns:
            Tuple (image redimensionnée, facteur de scale)
        """
        height, width = image.shape[:2]
        if width > max_width:
            scale = max_width / width
            new_height = int(height * scale)
            resized = cv2.resize(image, (max_width, new_height))
            return resized, scale
        return image, 1.0

    def _face_recognition(self):
        # dlib est lourd: chargé seulement quand le mode complet en a besoin
        try:
            import face_recognition
        except ImportError as e:
            raise FaceModelError(f"Modèle de reconnaissance faciale indisponible: {e}")
        return face_recognition

    def extract_descriptor(self, image_base64: str) -> DescriptorExtraction:
        """
        Extraire le descripteur facial (128 dimensions) d'une image
        Exactement un visage doit être présent.
        """
        if self.mode is FaceEngineMode.DEGRADED:
            return DescriptorExtraction(ExtractionStatus.UNAVAILABLE)

        image = self.decode_base64_image(image_base64)
        if image is None:
            return DescriptorExtraction(ExtractionStatus.INVALID_IMAGE)

        face_recognition = self._face_recognition()
        small_image, _ = self._resize_image_for_speed(image, max_width=480)

        try:
            # Modèle HOG (plus rapide que CNN)
            face_locations = face_recognition.face_locations(small_image, model="hog")
            if len(face_locations) == 0:
                logger.info("Aucun visage détecté dans l'image")
                return DescriptorExtraction(ExtractionStatus.NOT_FOUND)
            if len(face_locations) > 1:
                logger.info(f"Plusieurs visages détectés ({len(face_locations)})")
                return DescriptorExtraction(ExtractionStatus.AMBIGUOUS, face_count=len(face_locations))

            face_encodings = face_recognition.face_encodings(small_image, face_locations)
        except Exception as e:
            logger.error(f"Erreur d'extraction du descripteur facial: {e}")
            raise FaceModelError("Échec de l'extraction du descripteur facial")

        if len(face_encodings) == 0:
            return DescriptorExtraction(ExtractionStatus.NOT_FOUND)

        return DescriptorExtraction(
            ExtractionStatus.FOUND,
            descriptor=[float(x) for x in face_encodings[0]],
            face_count=1,
        )

    def validate_descriptor(self, descriptor: Sequence[float]) -> List[float]:
        """Contrôler un descripteur fourni par le client"""
        expected = get_settings().FACE_DESCRIPTOR_LENGTH
        values = [float(x) for x in descriptor]
        if len(values) != expected:
            raise ValueError(f"Le descripteur doit contenir {expected} valeurs (reçu {len(values)})")
        if not all(math.isfinite(x) for x in values):
            raise ValueError("Le descripteur contient des valeurs non finies")
        return values

    def detect_face_presence(self, image_base64: str) -> int:
        """
        Compter rapidement les visages présents dans l'image
        Utilise Haar Cascade (très rapide) au lieu de face_recognition
        """
        image = self.decode_base64_image(image_base64)
        if image is None:
            return -1

        small_image, _ = self._resize_image_for_speed(image, max_width=240)
        gray = cv2.cvtColor(small_image, cv2.COLOR_RGB2GRAY)
        faces = self.face_cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=4,
            minSize=(30, 30)
        )
        return len(faces)

    def verify(
        self,
        captured: Union[str, Descriptor],
        enrolled: Descriptor,
        threshold: Optional[float] = None,
    ) -> FaceVerificationResult:
        """
        Comparer une capture (image base64 ou descripteur) au descripteur enrôlé
        Le seuil est relu à chaque appel pour pouvoir l'ajuster sans redémarrage.
        matched <=> score >= seuil
        """
        if threshold is None:
            threshold = get_settings().FACE_SIMILARITY_THRESHOLD

        if isinstance(captured, str):
            if self.mode is FaceEngineMode.DEGRADED:
                count = self.detect_face_presence(captured)
                if count < 0:
                    status = ExtractionStatus.INVALID_IMAGE
                elif count == 0:
                    status = ExtractionStatus.NOT_FOUND
                else:
                    status = ExtractionStatus.FOUND
                return FaceVerificationResult(
                    matched=count > 0,
                    score=None,
                    threshold=threshold,
                    mode=FaceEngineMode.DEGRADED,
                    status=status,
                    warning="Moteur facial dégradé: seule la présence d'un visage a été vérifiée",
                )

            extraction = self.extract_descriptor(captured)
            if extraction.status is not ExtractionStatus.FOUND:
                return FaceVerificationResult(
                    matched=False, score=None, threshold=threshold,
                    mode=self.mode, status=extraction.status,
                )
            descriptor = extraction.descriptor
        else:
            descriptor = captured

        # Un descripteur déjà calculé se compare sans modèle
        score = similarity(descriptor, enrolled)
        return FaceVerificationResult(
            matched=score >= threshold,
            score=score,
            threshold=threshold,
            mode=FaceEngineMode.FULL,
        )

    def eye_aspect_ratios(self, image_base64: str) -> Optional[float]:
        """EAR moyen des deux yeux, ou None si aucun visage exploitable"""
        image = self.decode_base64_image(image_base64)
        if image is None:
            return None
        face_recognition = self._face_recognition()
        small_image, _ = self._resize_image_for_speed(image, max_width=480)
        landmarks = face_recognition.face_landmarks(small_image)
        if len(landmarks) != 1:
            return None
        face = landmarks[0]
        if "left_eye" not in face or "right_eye" not in face:
            return None
        return (eye_aspect_ratio(face["left_eye"]) + eye_aspect_ratio(face["right_eye"])) / 2.0

    def check_liveness(self, frames: Sequence[str]) -> LivenessResult:
        """
        Détecter un clignement sur une courte séquence d'images
        Heuristique contre la présentation d'une photo statique
        """
        if self.mode is FaceEngineMode.DEGRADED:
            raise FaceModelError("Détection de vivacité indisponible en mode dégradé")

        settings = get_settings()
        ears = []
        for frame in frames:
            ear = self.eye_aspect_ratios(frame)
            if ear is not None:
                ears.append(ear)

        return LivenessResult(
            blink_detected=detect_blink(
                ears,
                threshold=settings.LIVENESS_EAR_THRESHOLD,
                min_closed_frames=settings.LIVENESS_MIN_CLOSED_FRAMES,
            ),
            frames_analyzed=len(ears),
            ear_values=ears,
        )


# Instance globale du service
face_service = None


def get_face_service() -> FaceRecognitionService:
    """Retourne l'instance du moteur facial (créée au premier appel)"""
    global face_service

    if face_service is None:
        face_service = FaceRecognitionService()

    return face_service


_EXTRACTION_ERRORS = {
    ExtractionStatus.NOT_FOUND: ("FACE_NOT_DETECTED", "Aucun visage détecté. Améliorez l'éclairage et recentrez-vous."),
    ExtractionStatus.AMBIGUOUS: ("MULTIPLE_FACES", "Plusieurs visages détectés. Une seule personne doit être visible."),
    ExtractionStatus.INVALID_IMAGE: ("INVALID_IMAGE", "Image illisible"),
    ExtractionStatus.UNAVAILABLE: ("FACE_ENGINE_DEGRADED", "Reconnaissance faciale indisponible sur ce serveur"),
}


def extraction_error(status: ExtractionStatus) -> ValidationError:
    """Erreur à renvoyer au client pour une extraction sans descripteur"""
    code, message = _EXTRACTION_ERRORS[status]
    return ValidationError(message, code=code)
