"""Retrieval-augmented answering over the vector index.

Each query runs through a fixed sequence of stages and stops at the first
failure or at an answer:

    embed_query -> search -> (empty_answer) -> build_context
                -> generate_answer -> extract_citations -> done

Errors leaving a stage carry that stage's name. The only failure turned
into a non-fatal result is a temporarily unavailable answer generator,
which yields a degraded answer that still lists the retrieved sources.
"""
import re
from enum import Enum
from typing import List, Optional

import numpy as np
import structlog

from docqa import config
from docqa.errors import (
    AnswerGeneratorError,
    DocQAError,
    EmptyQueryError,
    PipelineError,
    TransientUnavailableError,
)
from docqa.llm_client import AnswerGenerator
from docqa.rag.embeddings import EmbeddingBackend, get_embedder
from docqa.rag.models import Citation, QueryResult, SearchResult, excerpt
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the uploaded documents "
    "to answer your question."
)

DEGRADED_ANSWER = (
    "The answer service is temporarily unavailable, so no answer could be "
    "generated. The most relevant passages from your documents are listed "
    "in the sources below."
)

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that answers questions using only the "
    "provided context. Whenever you use information from the context, cite "
    "it with its label, for example [Source 1]."
)

PROMPT_TEMPLATE = """Context information is below:
---------------------
{context}
---------------------

Using only the context above, answer the question below. If the context does not contain the answer, say so clearly. Reference the sources you use with [Source X] notation.

Question: {query}

Answer:"""

CITATION_EXCERPT_CHARS = 300


class QueryStage(str, Enum):
    EMBED_QUERY = "embed_query"
    SEARCH = "search"
    EMPTY_ANSWER = "empty_answer"
    BUILD_CONTEXT = "build_context"
    GENERATE_ANSWER = "generate_answer"
    EXTRACT_CITATIONS = "extract_citations"
    DONE = "done"


def source_label(source_number: int) -> str:
    return f"Source {source_number}"


def _label_pattern(source_number: int) -> "re.Pattern[str]":
    # "Source 1" must not match inside "Source 10"
    return re.compile(rf"\bsource\s+{source_number}(?!\d)", re.IGNORECASE)


class RAGEngine:
    """Answers questions from indexed fragments with source citations."""

    def __init__(
        self,
        vector_index: VectorIndex,
        answer_generator: AnswerGenerator,
        embedder: Optional[EmbeddingBackend] = None,
        degrade_on_unavailable: Optional[bool] = None,
    ):
        """Initialize the engine.

        Args:
            vector_index: Index to search
            answer_generator: Language model collaborator
            embedder: Embedding backend; must be the one used at ingestion
            degrade_on_unavailable: Return a degraded answer instead of failing
                when the generator is temporarily unavailable (default from config)
        """
        self.vector_index = vector_index
        self.answer_generator = answer_generator
        self.embedder = embedder or get_embedder()
        self.degrade_on_unavailable = (
            config.DEGRADE_ON_UNAVAILABLE
            if degrade_on_unavailable is None
            else degrade_on_unavailable
        )

    async def answer(
        self,
        query: str,
        max_results: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> QueryResult:
        """Answer a natural-language question from the indexed documents.

        Args:
            query: User question
            max_results: Maximum number of fragments to retrieve (default 5)
            similarity_threshold: Minimum similarity of retrieved fragments
                (default 0, i.e. accept all)

        Returns:
            QueryResult with answer, citations, retrieved context and confidence

        Raises:
            EmptyQueryError: If the query is blank
            ProviderError: If embedding or answer generation fails
        """
        stage = QueryStage.EMBED_QUERY
        try:
            query_vector = await self.embed_query(query)
            query = query.strip()

            stage = QueryStage.SEARCH
            results = self.vector_index.search(
                query_vector,
                top_k=config.RETRIEVAL_TOP_K if max_results is None else max_results,
                threshold=(
                    config.SIMILARITY_THRESHOLD
                    if similarity_threshold is None
                    else similarity_threshold
                ),
            )

            if not results:
                logger.warning("no_relevant_fragments_found", query_preview=query[:100])
                return QueryResult(answer=NO_RESULTS_ANSWER, confidence=0.0)

            logger.info("relevant_fragments_retrieved", count=len(results))

            stage = QueryStage.BUILD_CONTEXT
            context = self.build_context(results)

            stage = QueryStage.GENERATE_ANSWER
            try:
                answer = await self.generate_answer(query, context)
            except TransientUnavailableError as e:
                if not self.degrade_on_unavailable:
                    raise
                logger.warning(
                    "answer_generator_unavailable_degrading",
                    error=e.message,
                    sources=len(results),
                )
                return self._degraded_result(results)

            stage = QueryStage.EXTRACT_CITATIONS
            citations = self.extract_citations(results, answer)

        except DocQAError as e:
            raise e.with_stage(stage.value)
        except Exception as e:
            logger.exception("query_failed", stage=stage.value)
            raise PipelineError("Failed to process query", stage=stage.value) from e

        result = QueryResult(
            answer=answer,
            sources=citations,
            context=results,
            confidence=results[0].similarity,
        )

        logger.info(
            "query_answered",
            answer_length=len(answer),
            sources_count=len(citations),
            implicit_sources=all(c.implicit for c in citations),
            confidence=result.confidence,
        )
        return result

    async def embed_query(self, query: str) -> np.ndarray:
        """Embed a query, rejecting blank input.

        Raises:
            EmptyQueryError: If the query is empty after trimming
        """
        if not query or not query.strip():
            raise EmptyQueryError("Query parameter is required and cannot be empty")
        return await self.embedder.embed(query.strip())

    async def retrieve(
        self,
        query: str,
        max_results: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        """Embed and search without generating an answer."""
        query_vector = await self.embed_query(query)
        return self.vector_index.search(
            query_vector,
            top_k=max_results,
            threshold=similarity_threshold,
        )

    @staticmethod
    def build_context(results: List[SearchResult]) -> str:
        """Join retrieved fragments, each labelled by its position in the results."""
        return "\n\n".join(
            f"[{source_label(number)}]: {result.fragment.content}"
            for number, result in enumerate(results, 1)
        )

    @staticmethod
    def build_prompt(query: str, context: str) -> str:
        return PROMPT_TEMPLATE.format(context=context, query=query)

    async def generate_answer(self, query: str, context: str) -> str:
        """Ask the answer generator, passing the context and the original question.

        Raises:
            AnswerGeneratorError: If the generator fails or returns nothing
        """
        answer = await self.answer_generator.generate(
            self.build_prompt(query, context),
            system=SYSTEM_INSTRUCTION,
        )
        if not answer or not answer.strip():
            raise AnswerGeneratorError("Empty response from the answer generator")
        return answer.strip()

    @staticmethod
    def extract_citations(results: List[SearchResult], answer: str) -> List[Citation]:
        """Find which retrieved fragments the answer cites by positional label.

        Sources are never dropped: when the answer cites none of the labels,
        every retrieved fragment is returned as an implicit citation.
        """
        cited = [
            _citation(number, result, implicit=False)
            for number, result in enumerate(results, 1)
            if _label_pattern(number).search(answer)
        ]
        if cited or not results:
            return cited

        return [
            _citation(number, result, implicit=True)
            for number, result in enumerate(results, 1)
        ]

    def _degraded_result(self, results: List[SearchResult]) -> QueryResult:
        return QueryResult(
            answer=DEGRADED_ANSWER,
            sources=[
                _citation(number, result, implicit=True)
                for number, result in enumerate(results, 1)
            ],
            context=results,
            confidence=results[0].similarity,
            degraded=True,
        )


def _citation(source_number: int, result: SearchResult, implicit: bool) -> Citation:
    metadata = result.fragment.metadata
    return Citation(
        source_number=source_number,
        fragment_id=result.fragment.id,
        document_id=metadata.document_id,
        document_name=metadata.original_name,
        fragment_index=metadata.fragment_index,
        similarity=result.similarity,
        excerpt=excerpt(result.fragment.content, CITATION_EXCERPT_CHARS),
        implicit=implicit,
    )
