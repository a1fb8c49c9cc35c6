"""Outreach pipeline: task queue, composition, qualification, agent loop."""

from outreach_engine.outreach.task_queue import TaskQueue
from outreach_engine.outreach.composer import MessageComposer
from outreach_engine.outreach.qualification import score_prospect, qualification_outcome
