from models.audit_log import AuditLog
from models.program import Program
from models.program_membership import ProgramMembership
from models.program_template_link import ProgramTemplateLink
from models.template import Template
from models.user import User, UserRole

__all__ = [
	"AuditLog",
	"Program",
	"ProgramMembership",
	"ProgramTemplateLink",
	"Template",
	"User",
	"UserRole",
]
