"""Transcription job results from AWS Transcribe.

Job metadata comes from the Transcribe API (``boto3``, run in a worker
thread); the transcript itself is a JSON document fetched over HTTPS.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

import boto3
import httpx


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptionJob:
    name: str
    transcript: str
    tags: dict[str, str] = field(default_factory=dict)


class TranscriptSource(Protocol):
    async def fetch(self, job_name: str) -> TranscriptionJob: ...


def transcript_text(document: dict) -> str:
    """First transcript alternative of a Transcribe result document."""
    transcripts = (document.get("results") or {}).get("transcripts") or []
    if not transcripts:
        return ""
    return str(transcripts[0].get("transcript", ""))


class AwsTranscriptSource:
    def __init__(self, region: str, timeout: float = 10.0) -> None:
        self._region = region
        self._timeout = timeout

    def _get_job(self, job_name: str) -> dict:
        client = boto3.client("transcribe", region_name=self._region)
        return client.get_transcription_job(TranscriptionJobName=job_name)["TranscriptionJob"]

    async def fetch(self, job_name: str) -> TranscriptionJob:
        job = await asyncio.to_thread(self._get_job, job_name)
        tags = {t["Key"]: t["Value"] for t in job.get("Tags", [])}
        uri = job["Transcript"]["TranscriptFileUri"]
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(uri)
            response.raise_for_status()
            document = response.json()
        logger.debug("fetched transcript for job %s", job_name)
        return TranscriptionJob(name=job_name, transcript=transcript_text(document), tags=tags)
