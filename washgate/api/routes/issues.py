from flask import Blueprint, request, jsonify
from washgate.services.issue_service import IssueService
from washgate.services.rebook_service import RebookService
from washgate.utils.decorators import token_required, staff_required

issues_bp = Blueprint('issues', __name__)


@issues_bp.route('/', methods=['POST'])
@token_required
def report_issue(current_user):
    data = request.get_json(silent=True) or {}
    if not data.get('machine_code'):
        return jsonify({'error': 'machine_code is required'}), 400
    issue = IssueService.report_issue(
        current_user,
        machine_code=data['machine_code'],
        issue_type=data.get('issue_type'),
        description=data.get('description'),
        booking_id=data.get('booking_id'),
        session_id=data.get('session_id'),
    )
    return jsonify(issue.to_dict()), 201


@issues_bp.route('/my', methods=['GET'])
@token_required
def my_issues(current_user):
    return jsonify([i.to_dict() for i in IssueService.get_user_issues(current_user.id)])


@issues_bp.route('/all', methods=['GET'])
@token_required
@staff_required
def all_issues(current_user):
    issues = IssueService.get_all_issues(
        status=request.args.get('status'),
        machine_code=request.args.get('machine_code'),
    )
    return jsonify([i.to_dict() for i in issues])


@issues_bp.route('/<int:issue_id>/verify', methods=['PUT'])
@token_required
@staff_required
def verify(current_user, issue_id):
    return jsonify(IssueService.verify_issue(issue_id, current_user).to_dict())


@issues_bp.route('/<int:issue_id>/resolve', methods=['PUT'])
@token_required
@staff_required
def resolve(current_user, issue_id):
    data = request.get_json(silent=True) or {}
    issue = IssueService.resolve_issue(issue_id, current_user, resolution_note=data.get('resolution_note'))
    return jsonify(issue.to_dict())


@issues_bp.route('/<int:issue_id>/dismiss', methods=['PUT'])
@token_required
@staff_required
def dismiss(current_user, issue_id):
    data = request.get_json(silent=True) or {}
    issue = IssueService.dismiss_issue(issue_id, current_user, resolution_note=data.get('resolution_note'))
    return jsonify(issue.to_dict())


# --- PRIORITY REBOOKING ---

@issues_bp.route('/<int:issue_id>/priority_rebook', methods=['POST'])
@token_required
@staff_required
def offer_priority_rebook(current_user, issue_id):
    offer = RebookService.offer_priority_rebook(issue_id, current_user)
    return jsonify(offer.to_dict()), 201


@issues_bp.route('/priority_rebook/pending', methods=['GET'])
@token_required
def pending_offers(current_user):
    return jsonify([o.to_dict() for o in RebookService.get_pending_offers(current_user.id)])


@issues_bp.route('/priority_rebook/<int:offer_id>/respond', methods=['PUT'])
@token_required
def respond(current_user, offer_id):
    data = request.get_json(silent=True) or {}
    action = data.get('action')
    if action not in ('accept', 'decline'):
        return jsonify({'error': "action must be 'accept' or 'decline'"}), 400

    booking = RebookService.respond_to_offer(offer_id, current_user, accept=(action == 'accept'))
    if booking is None:
        return jsonify({'message': 'Priority rebook declined. You can book manually.'}), 200
    return jsonify({'message': 'Priority rebook accepted.', 'booking': booking.to_dict()}), 200
